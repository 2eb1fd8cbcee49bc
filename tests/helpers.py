# tests/helpers.py

import os
import tempfile

from q3ladder.database import Database, MatchDebouncePolicy
from q3ladder.events import IdentityUpdate, Kill, MatchEnd, MatchStart
from q3ladder.status_client import LiveStatus, StatusPlayer

BASE_TS = 1_700_000_000.0


def fixture_path(filename: str) -> str:
    return os.path.join(os.path.dirname(__file__), "fixtures", filename)


def create_test_db(debounce_seconds: float = 5.0):
    """Create a fresh database file; returns (db, path)."""
    fd, db_path = tempfile.mkstemp(suffix='.db')
    os.close(fd)
    return Database(db_path, debounce=MatchDebouncePolicy(debounce_seconds)), db_path


def remove_test_db(db: Database, db_path: str) -> None:
    db.close()
    for suffix in ('', '-wal', '-shm'):
        if os.path.exists(db_path + suffix):
            os.remove(db_path + suffix)


def start(map_name='q3dm17', ts=BASE_TS, **kwargs) -> MatchStart:
    return MatchStart(map=map_name, gametype='0', ts=ts, **kwargs)


def end(ts=BASE_TS, **kwargs) -> MatchEnd:
    return MatchEnd(ts=ts, **kwargs)


def userinfo(slot, name, guid=None, ts=BASE_TS, **kwargs) -> IdentityUpdate:
    return IdentityUpdate(slot=slot, name=name, guid=guid, ts=ts, **kwargs)


def kill(killer, victim, cause='MOD_RAILGUN', ts=BASE_TS, killer_slot=0, victim_slot=1, **kwargs) -> Kill:
    return Kill(killer_slot=killer_slot, victim_slot=victim_slot, killer=killer, victim=victim,
                cause=cause, ts=ts, **kwargs)


def add_frags(db: Database, killer: str, victim: str, count: int, ts=BASE_TS, cause='MOD_RAILGUN'):
    """Record `count` kills of victim by killer in the open (or placeholder) match."""
    for i in range(count):
        db.record_kill(None, killer, victim, cause, ts=ts + i)


class FakeProvider:
    """Stands in for StatusClient; answers with a fixed roster or raises."""

    def __init__(self, status=None, error=None, delay=0.0):
        self.status = status
        self.error = error
        self.delay = delay
        self.calls = 0

    def get_status(self, timeout_seconds=None):
        self.calls += 1
        if self.delay:
            import time
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.status


def live_status(map_name='q3dm17', players=(), hostname='Frag Arena') -> LiveStatus:
    return LiveStatus(
        info={'mapname': map_name, 'g_gametype': '0', 'sv_hostname': hostname},
        players=[StatusPlayer(name=n, score=s, ping=p) for n, s, p in players],
    )
