# tests/test_web.py

import pytest
from fastapi.testclient import TestClient

from q3ladder.config import Settings
from q3ladder.errors import ProviderTimeout, ProviderUnavailable
from q3ladder.service import LadderService
from web.app import app, get_service

from tests.helpers import BASE_TS, FakeProvider, add_frags, kill, live_status, start


@pytest.fixture
def provider():
    return FakeProvider(status=live_status('q3dm17', players=[('^1Alice', 4, 30), ('Bob', 1, 50)]))


@pytest.fixture
def service(tmp_path, provider):
    settings = Settings(
        log_path=tmp_path / 'games.log',
        db_path=str(tmp_path / 'ladder.db'),
        cache_ttl=0,
        prime_from_status=False,
    )
    svc = LadderService(settings, provider=provider)
    yield svc
    svc.stop()


@pytest.fixture
def client(service):
    app.dependency_overrides[get_service] = lambda: service
    # No context manager: the lifespan (and its log tailer) stays off.
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    assert client.get('/health').json() == {'ok': True}


def test_service_missing_is_503():
    assert TestClient(app).get('/api/ladder').status_code == 503


def test_summary_live(client, service):
    service.match_state.apply(start('q3dm17', ts=BASE_TS))
    service.match_state.apply(kill('Bob', '^1Alice'))

    response = client.get('/api/summary')
    assert response.status_code == 200
    body = response.json()
    assert body['source'] == 'live'
    alice = body['current_match']['players'][0]
    assert (alice['name'], alice['kills'], alice['deaths']) == ('Alice', 4, 1)
    assert response.headers['etag'].startswith('"')


def test_summary_not_modified(client):
    first = client.get('/api/summary')
    etag = first.headers['etag']
    again = client.get('/api/summary', headers={'If-None-Match': etag})
    assert again.status_code == 304
    assert again.headers['etag'] == etag


def test_summary_tail_fallback(client, provider):
    provider.error = ProviderUnavailable("down")
    body = client.get('/api/summary').json()
    assert body['source'] == 'tail'
    assert body['current_match'] is None


def test_ladder(client, service):
    add_frags(service.db, 'Alice', 'Bob', 3)
    add_frags(service.db, 'Sarge', 'Alice', 1)
    players = client.get('/api/ladder').json()['players']
    assert [p['identity'] for p in players] == ['alice', 'bob']
    players = client.get('/api/ladder', params={'includeBots': 'true', 'limit': 1}).json()['players']
    assert [p['identity'] for p in players] == ['alice']


def test_current_match_no_store(client):
    response = client.get('/api/match')
    assert response.headers['cache-control'].startswith('no-store')
    assert response.json()['source'] == 'live'


def test_status_errors(client, provider):
    provider.error = ProviderTimeout("slow")
    assert client.get('/api/status').status_code == 504
    provider.error = ProviderUnavailable("down")
    assert client.get('/api/status').status_code == 502
    provider.error = None
    assert client.get('/api/status').json()['info']['mapname'] == 'q3dm17'


def test_matches(client, service):
    match_id = service.db.open_match('q3dm17', started_at=BASE_TS)
    service.db.record_kill(match_id, 'Alice', 'Bob', 'MOD_RAILGUN', ts=BASE_TS + 1)
    listed = client.get('/api/matches').json()['matches']
    assert listed[0]['id'] == match_id
    detail = client.get(f'/api/matches/{match_id}').json()
    assert detail['frags'] == 1
    assert client.get('/api/matches/999').status_code == 404


def test_players(client, service):
    add_frags(service.db, '^1Alice', 'Bob', 2)
    assert {p['identity'] for p in client.get('/api/players').json()['players']} == {'alice', 'bob'}
    found = client.get('/api/players', params={'search': 'ali'}).json()['players']
    assert [p['identity'] for p in found] == ['alice']

    profile = client.get('/api/players/ALICE', params={'topN': 3}).json()
    assert profile['totals']['kills'] == 2
    assert client.get('/api/players/nobody').status_code == 404
