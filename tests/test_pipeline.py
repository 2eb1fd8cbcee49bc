# tests/test_pipeline.py

import pytest

from q3ladder.errors import ProviderTimeout, StoreWriteFailure
from q3ladder.match_state import MatchState
from q3ladder.pipeline import EventPipeline, PersistencePolicy
from q3ladder.tailer import LogTailer

from tests.helpers import (
    BASE_TS,
    FakeProvider,
    create_test_db,
    end,
    fixture_path,
    kill,
    live_status,
    remove_test_db,
    start,
    userinfo,
)


@pytest.fixture
def db():
    database, path = create_test_db()
    yield database
    remove_test_db(database, path)


@pytest.fixture
def pipeline(db):
    return EventPipeline(MatchState(), db)


def _frag_count(db):
    return db.conn.execute("SELECT COUNT(*) FROM frags").fetchone()[0]


class TestPersistencePolicy:

    def test_defaults(self):
        policy = PersistencePolicy()
        assert policy.should_persist(kill('A', 'B'))
        assert not policy.should_persist(kill('A', 'B', seed=True))
        assert policy.should_persist(start(synthetic=True))

    def test_persist_seed(self):
        assert PersistencePolicy(persist_seed=True).should_persist(kill('A', 'B', seed=True))


class TestLiveEvents:

    def test_match_lifecycle(self, pipeline, db):
        pipeline.handle(start('q3dm17', ts=BASE_TS))
        pipeline.handle(userinfo(0, '^1Foo', guid='G1', ts=BASE_TS + 1))
        pipeline.handle(kill('^1Foo', '^2Bar', ts=BASE_TS + 2))
        match_id = pipeline.current_match_id
        assert db.get_match(match_id)['map'] == 'q3dm17'
        assert db.get_player('foo')['guid'] == 'G1'

        pipeline.handle(end(ts=BASE_TS + 100))
        assert pipeline.current_match_id is None
        assert db.get_match(match_id)['ended_at'] == BASE_TS + 100
        assert db.match_detail(match_id)['frags'] == 1

    def test_state_and_store_agree(self, pipeline, db):
        pipeline.handle(start('q3dm17', ts=BASE_TS))
        pipeline.handle(kill('Foo', 'Bar', ts=BASE_TS + 1))
        pipeline.handle(kill('Foo', 'Foo', ts=BASE_TS + 2))
        board = {r['identity']: r for r in db.match_counters(pipeline.current_match_id)}
        for key in ('foo', 'bar'):
            counters = pipeline.match_state.counters_for(key)
            assert (counters.kills, counters.deaths) == (board[key]['kills'], board[key]['deaths'])

    def test_guid_rename_keeps_one_player(self, pipeline, db):
        pipeline.handle(start('q3dm17', ts=BASE_TS))
        pipeline.handle(userinfo(0, 'Foo', guid='G1', ts=BASE_TS + 1))
        pipeline.handle(kill('Foo', 'Bar', ts=BASE_TS + 2))
        pipeline.handle(userinfo(0, '^3Renamed', guid='G1', ts=BASE_TS + 3))
        pipeline.handle(kill('^3Renamed', 'Bar', ts=BASE_TS + 4))

        ladder = db.ladder(include_bots=True)
        assert [(r['identity'], r['kills']) for r in ladder] == [('foo', 2), ('bar', 0)]
        assert ladder[0]['name'] == 'Renamed'
        assert len(db.list_players()) == 2
        assert db.get_player('renamed')['guid'] == 'G1'
        assert db.player_profile('Renamed')['totals']['kills'] == 2

    def test_kill_without_start_uses_placeholder(self, pipeline, db):
        pipeline.handle(kill('Foo', 'Bar', ts=BASE_TS))
        assert db.get_match(pipeline.current_match_id)['map'] == 'unknown'
        assert pipeline.match_state.match.implicit

    def test_callable(self, pipeline, db):
        pipeline(kill('Foo', 'Bar'))
        assert _frag_count(db) == 1

    def test_store_failure_is_logged_and_counted(self, pipeline, db, monkeypatch, caplog):
        def failing(*args, **kwargs):
            raise StoreWriteFailure("disk full")

        monkeypatch.setattr(db, 'record_kill', failing)
        pipeline.handle(start())
        pipeline.handle(kill('Foo', 'Bar'))
        assert pipeline.lost_events == 1
        assert pipeline.match_state.counters_for('foo').kills == 1
        assert "disk full" in caplog.text


class TestSeedReconciliation:

    def test_seed_events_not_persisted(self, pipeline, db):
        events = []
        tailer = LogTailer(fixture_path('games.log'), events.append)
        tailer.seed()
        for event in events:
            pipeline.handle(event)
        assert _frag_count(db) == 0
        assert db.recent_matches() == []
        assert pipeline.match_state.match.map == 'q3dm6'
        assert pipeline.match_state.counters_for('alice').kills == 1

    def test_seeded_open_match_is_persisted(self, pipeline, db):
        pipeline.handle(start('q3dm6', ts=BASE_TS, seed=True))
        pipeline.on_seed_complete()
        match_id = pipeline.current_match_id
        assert db.get_match(match_id)['map'] == 'q3dm6'

        pipeline.handle(kill('Foo', 'Bar', ts=BASE_TS + 30))
        assert db.match_detail(match_id)['frags'] == 1

    def test_restart_mid_map_reuses_open_row(self, pipeline, db):
        existing = db.open_match('q3dm6', started_at=BASE_TS - 600)
        db.record_kill(existing, 'Foo', 'Bar', 'MOD_RAILGUN', ts=BASE_TS - 500)

        # The seed pass stamps replayed lines with the time of the restart.
        pipeline.handle(start('q3dm6', ts=BASE_TS, seed=True))
        pipeline.handle(kill('Foo', 'Bar', ts=BASE_TS, seed=True))
        pipeline.on_seed_complete()
        assert pipeline.current_match_id == existing

        pipeline.handle(kill('Foo', 'Bar', ts=BASE_TS + 5))
        assert [m['id'] for m in db.recent_matches()] == [existing]
        assert db.get_match(existing)['ended_at'] is None
        assert db.match_detail(existing)['frags'] == 2

    def test_restart_on_new_map_replaces_open_row(self, pipeline, db):
        stale = db.open_match('q3dm17', started_at=BASE_TS - 600)
        pipeline.handle(start('q3dm6', ts=BASE_TS, seed=True))
        pipeline.on_seed_complete()
        assert pipeline.current_match_id != stale
        assert db.get_match(stale)['ended_at'] is not None
        assert db.get_match(pipeline.current_match_id)['map'] == 'q3dm6'

    def test_stale_open_match_closed(self, pipeline, db):
        stale = db.open_match('q3dm17', started_at=BASE_TS)
        pipeline.handle(start('q3dm17', ts=BASE_TS + 10, seed=True))
        pipeline.handle(end(ts=BASE_TS + 20, seed=True))
        pipeline.on_seed_complete(log_had_content=True)
        assert db.get_match(stale)['ended_at'] is not None

    def test_empty_log_keeps_open_match(self, pipeline, db):
        existing = db.open_match('q3dm17', started_at=BASE_TS)
        pipeline.on_seed_complete(log_had_content=False)
        assert db.get_match(existing)['ended_at'] is None


class TestPrime:

    def test_prime_opens_synthetic_match(self, pipeline, db):
        provider = FakeProvider(status=live_status('q3dm17', hostname='Arena'))
        assert pipeline.prime_from_status(provider, 0.5) is True
        assert pipeline.match_state.match.map == 'q3dm17'
        assert db.get_match(pipeline.current_match_id)['hostname'] == 'Arena'

    def test_prime_skipped_when_match_known(self, pipeline):
        provider = FakeProvider(status=live_status('q3dm6'))
        pipeline.handle(start('q3dm17'))
        assert pipeline.prime_from_status(provider, 0.5) is False
        assert provider.calls == 0
        assert pipeline.match_state.match.map == 'q3dm17'

    def test_prime_tolerates_dead_server(self, pipeline):
        provider = FakeProvider(error=ProviderTimeout("no answer"))
        assert pipeline.prime_from_status(provider, 0.1) is False
        assert pipeline.match_state.match is None
