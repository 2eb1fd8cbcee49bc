# q3ladder/snapshot.py

import hashlib
import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from q3ladder import identity
from q3ladder.calculator import compute_kd, rank_rows
from q3ladder.database import Database
from q3ladder.errors import ProviderTimeout, ProviderUnavailable
from q3ladder.match_state import MatchState
from q3ladder.status_client import LiveStatus

logger = logging.getLogger(__name__)

SOURCE_LIVE = 'live'
SOURCE_TAIL = 'tail'


def hash_payload(payload: Dict[str, Any]) -> str:
    try:
        encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError):
        encoded = str(payload).encode("utf-8")
    return hashlib.sha1(encoded).hexdigest()


@dataclass(frozen=True)
class Snapshot:
    body: Dict[str, Any]
    etag: str

    @property
    def source(self) -> str:
        return self.body['source']


class SnapshotBuilder:
    """
    Merge the live server, the in-memory match and the career ladder.

    The live query is raced against a short timeout. When it answers,
    its roster scores are the current-session kills and MatchState only
    contributes deaths. When it does not, the current match comes
    entirely from MatchState and the body says `source: "tail"`.
    Responses are memoized per (limit, offset, include_bots) for `cache_ttl`
    seconds and carry a content hash for conditional requests.
    """

    def __init__(self, match_state: MatchState, db: Database, provider=None,
                 timeout_seconds: float = 0.9, cache_ttl: float = 1.0,
                 bot_names: Iterable[str] = identity.DEFAULT_BOT_NAMES,
                 current_match_size: int = 5,
                 clock: Callable[[], float] = time.monotonic):
        self.match_state = match_state
        self.db = db
        self.provider = provider
        self.timeout_seconds = timeout_seconds
        self.cache_ttl = cache_ttl
        self.bot_names = frozenset(bot_names)
        self.current_match_size = current_match_size
        self.clock = clock
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix='live-status')
        self._cache: Dict[Tuple[int, int, bool], Tuple[float, Snapshot]] = {}
        self._cache_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Live provider
    # ------------------------------------------------------------------

    def query_live(self) -> LiveStatus:
        """Ask the provider once; raise ProviderUnavailable/ProviderTimeout on failure."""
        if self.provider is None:
            raise ProviderUnavailable("No live status provider configured")
        future = self._executor.submit(self.provider.get_status, self.timeout_seconds)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FuturesTimeout as exc:
            future.cancel()
            raise ProviderTimeout(f"Live status did not answer within {self.timeout_seconds}s") from exc

    def _live_or_none(self) -> Optional[LiveStatus]:
        try:
            return self.query_live()
        except (ProviderUnavailable, OSError) as e:
            logger.debug("Live status unavailable, using tail: %s", e)
            return None

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def _keep(self, name: str, include_bots: bool) -> bool:
        return include_bots or not identity.is_bot(name, self.bot_names)

    def _live_current_match(self, status: LiveStatus, snap: Dict[str, Any],
                            include_bots: bool) -> Dict[str, Any]:
        deaths_by_key = self.match_state.deaths_by_identity()
        rows: List[Dict[str, Any]] = []
        for p in status.players:
            key = identity.identity_key(p.name)
            if not self._keep(p.name, include_bots):
                continue
            deaths = deaths_by_key.get(key, 0)
            rows.append({
                'identity': key,
                'display_name': p.name,
                'name': identity.plain_name(p.name),
                'kills': p.score,
                'deaths': deaths,
                'kd': compute_kd(p.score, deaths),
                'ping': p.ping,
            })
        match = snap['match'] or {}
        return {
            'map': status.map or match.get('map') or 'unknown',
            'gametype': status.gametype or match.get('gametype') or '0',
            'hostname': status.hostname or match.get('hostname') or '',
            'started_at': match.get('started_at'),
            'players': rank_rows(rows)[:self.current_match_size],
        }

    def _tail_current_match(self, snap: Dict[str, Any], include_bots: bool) -> Optional[Dict[str, Any]]:
        match = snap['match']
        if match is None:
            return None
        players = [
            {k: p[k] for k in ('identity', 'display_name', 'name', 'kills', 'deaths', 'kd')}
            for p in snap['players']
            if self._keep(p['display_name'], include_bots)
        ]
        return {
            'map': match['map'],
            'gametype': match['gametype'],
            'hostname': match['hostname'],
            'started_at': match['started_at'],
            'players': players[:self.current_match_size],
        }

    @staticmethod
    def _live_info(status: LiveStatus) -> Dict[str, Any]:
        return {
            'hostname': status.hostname,
            'map': status.map,
            'gametype': status.gametype,
            'player_count': len(status.players),
            'players': [
                {'name': identity.plain_name(p.name), 'score': p.score, 'ping': p.ping}
                for p in status.players
            ],
        }

    def get_current_match(self, include_bots: bool = False) -> Dict[str, Any]:
        snap = self.match_state.snapshot()
        status = self._live_or_none()
        if status is not None:
            return {'source': SOURCE_LIVE, 'current_match': self._live_current_match(status, snap, include_bots)}
        return {'source': SOURCE_TAIL, 'current_match': self._tail_current_match(snap, include_bots)}

    def build_snapshot(self, limit: int = 25, include_bots: bool = False, offset: int = 0) -> Snapshot:
        snap = self.match_state.snapshot()
        status = self._live_or_none()
        if status is not None:
            body = {
                'source': SOURCE_LIVE,
                'live': self._live_info(status),
                'current_match': self._live_current_match(status, snap, include_bots),
            }
        else:
            body = {
                'source': SOURCE_TAIL,
                'live': None,
                'current_match': self._tail_current_match(snap, include_bots),
            }
        body['ladder'] = self.get_ladder(limit, include_bots, offset)
        return Snapshot(body=body, etag=hash_payload(body))

    def get_snapshot(self, limit: int = 25, include_bots: bool = False, offset: int = 0) -> Snapshot:
        key = (int(limit), int(offset), bool(include_bots))
        now = self.clock()
        with self._cache_lock:
            cached = self._cache.get(key)
            if cached is not None and cached[0] > now:
                return cached[1]

        snapshot = self.build_snapshot(limit, include_bots, offset)
        with self._cache_lock:
            self._cache[key] = (self.clock() + self.cache_ttl, snapshot)
        return snapshot

    def invalidate(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    # ------------------------------------------------------------------
    # Career
    # ------------------------------------------------------------------

    def get_ladder(self, limit: int = 25, include_bots: bool = False, offset: int = 0) -> List[Dict[str, Any]]:
        return self.db.ladder(limit, offset=offset, include_bots=include_bots, bot_names=self.bot_names)

    def get_player_profile(self, name: str, since_days: Optional[float] = None,
                           top_n: int = 10) -> Optional[Dict[str, Any]]:
        return self.db.player_profile(name, since_days=since_days, top_n=top_n, bot_names=self.bot_names)

    def get_live_status(self) -> Dict[str, Any]:
        """Raw live view; raises when the server does not answer."""
        status = self.query_live()
        return {'info': status.info, 'players': self._live_info(status)['players']}

    def close(self) -> None:
        self._executor.shutdown(wait=False)
