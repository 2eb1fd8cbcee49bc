# q3ladder/match_state.py

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from q3ladder import identity
from q3ladder.calculator import compute_kd, rank_rows
from q3ladder.events import IdentityUpdate, Kill, MatchEnd, MatchStart

logger = logging.getLogger(__name__)

NO_MATCH = 'NoMatch'
ACTIVE = 'Active'

UNKNOWN_MAP = 'unknown'
UNKNOWN_GAMETYPE = '0'


@dataclass
class PlayerCounters:
    display_name: str
    kills: int = 0
    deaths: int = 0
    suicides: int = 0


@dataclass
class MatchInfo:
    map: str
    gametype: str
    hostname: str
    started_at: float
    implicit: bool = False


class MatchState:
    """
    In-memory aggregate of the open match.

    This is a read-through cache for low-latency snapshots and never the
    system of record; `rebuild_from_store` restores it from the database.
    Only `apply` (and the rebuild) mutate it. A single dispatcher thread
    writes; HTTP threads read through `snapshot`.
    """

    def __init__(self, count_suicides: bool = True):
        self.count_suicides = count_suicides
        self._lock = threading.Lock()
        self._match: Optional[MatchInfo] = None
        self._players: Dict[str, PlayerCounters] = {}

    @property
    def status(self) -> str:
        return ACTIVE if self._match is not None else NO_MATCH

    @property
    def match(self) -> Optional[MatchInfo]:
        return self._match

    def apply(self, event) -> None:
        with self._lock:
            if isinstance(event, MatchStart):
                self._start(event)
            elif isinstance(event, MatchEnd):
                self._end()
            elif isinstance(event, IdentityUpdate):
                self._touch(event)
            elif isinstance(event, Kill):
                self._kill(event)

    def _start(self, event: MatchStart) -> None:
        if self._match is not None:
            logger.debug("MatchStart while active on %s; restarting", self._match.map)
        self._match = MatchInfo(
            map=event.map or UNKNOWN_MAP,
            gametype=event.gametype or UNKNOWN_GAMETYPE,
            hostname=event.hostname or '',
            started_at=event.ts,
        )
        self._players = {}

    def _end(self) -> None:
        self._match = None
        self._players = {}

    def _entry(self, ident: identity.Identity) -> PlayerCounters:
        entry = self._players.get(ident.key)
        if entry is None:
            entry = PlayerCounters(display_name=ident.display_name)
            self._players[ident.key] = entry
        else:
            entry.display_name = ident.display_name
        return entry

    def _touch(self, event: IdentityUpdate) -> None:
        if self._match is None:
            return
        ident = identity.resolve(event.name)
        if ident is None:
            return
        self._entry(ident)

    def _kill(self, event: Kill) -> None:
        if self._match is None:
            self._match = MatchInfo(
                map=UNKNOWN_MAP,
                gametype=UNKNOWN_GAMETYPE,
                hostname='',
                started_at=event.ts,
                implicit=True,
            )

        victim = identity.resolve(event.victim)
        killer = identity.resolve(event.killer)

        if victim is not None:
            self._entry(victim).deaths += 1

        if killer is None:
            return
        if victim is not None and killer.key == victim.key:
            if self.count_suicides:
                self._entry(victim).suicides += 1
            return
        self._entry(killer).kills += 1

    def counters_for(self, key: str) -> Optional[PlayerCounters]:
        with self._lock:
            entry = self._players.get(key)
            if entry is None:
                return None
            return PlayerCounters(entry.display_name, entry.kills, entry.deaths, entry.suicides)

    def deaths_by_identity(self) -> Dict[str, int]:
        with self._lock:
            return {key: c.deaths for key, c in self._players.items()}

    def snapshot(self) -> Dict[str, Any]:
        """Point-in-time copy: {'status', 'match', 'players'} in ladder order."""
        with self._lock:
            match = None
            if self._match is not None:
                match = {
                    'map': self._match.map,
                    'gametype': self._match.gametype,
                    'hostname': self._match.hostname,
                    'started_at': self._match.started_at,
                    'implicit': self._match.implicit,
                }
            rows: List[Dict[str, Any]] = []
            for key, c in self._players.items():
                rows.append({
                    'identity': key,
                    'display_name': c.display_name,
                    'name': identity.plain_name(c.display_name),
                    'kills': c.kills,
                    'deaths': c.deaths,
                    'kd': compute_kd(c.kills, c.deaths),
                    'suicides': c.suicides,
                })
            status = self.status
        return {'status': status, 'match': match, 'players': rank_rows(rows)}

    def rebuild_from_store(self, db, now: Optional[float] = None) -> bool:
        """
        Restore the open match and its counters from persisted frags.

        Returns False (leaving the state empty) when the store has no
        open match.
        """
        match_id = db.open_match_id()
        with self._lock:
            self._end()
            if match_id is None:
                return False
            row = db.get_match(match_id)
            self._match = MatchInfo(
                map=row['map'] or UNKNOWN_MAP,
                gametype=row['gametype'] or UNKNOWN_GAMETYPE,
                hostname=row['hostname'] or '',
                started_at=row['started_at'] if row['started_at'] is not None else (now or time.time()),
            )
            for entry in db.match_counters(match_id):
                self._players[entry['identity']] = PlayerCounters(
                    display_name=entry['display_name'],
                    kills=entry['kills'],
                    deaths=entry['deaths'],
                    suicides=entry['suicides'] if self.count_suicides else 0,
                )
        logger.info("Rebuilt match state from store: match %s on %s", match_id, self._match.map)
        return True
