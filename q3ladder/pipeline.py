# q3ladder/pipeline.py

import logging
import time
from dataclasses import dataclass
from typing import Optional

from q3ladder.database import Database
from q3ladder.errors import LadderError, StoreWriteFailure
from q3ladder.events import IdentityUpdate, Kill, MatchEnd, MatchStart
from q3ladder.match_state import MatchState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersistencePolicy:
    """
    Which events reach the database.

    Seed events replay history that is already persisted (or predates
    this install), so by default they only rebuild MatchState. Synthetic
    events (startup priming from the live server) are always written.
    """
    persist_seed: bool = False

    def should_persist(self, event) -> bool:
        if getattr(event, 'synthetic', False):
            return True
        if getattr(event, 'seed', False):
            return self.persist_seed
        return True


class EventPipeline:
    """Apply each event to MatchState, then (policy permitting) to the store."""

    def __init__(self, match_state: MatchState, db: Database,
                 policy: Optional[PersistencePolicy] = None):
        self.match_state = match_state
        self.db = db
        self.policy = policy or PersistencePolicy()
        self.current_match_id: Optional[int] = None
        self.lost_events = 0

    def handle(self, event) -> None:
        try:
            self.match_state.apply(event)
        except Exception:
            logger.exception("Match state rejected %s", type(event).__name__)

        if not self.policy.should_persist(event):
            return
        try:
            self.persist(event)
        except StoreWriteFailure as e:
            self.lost_events += 1
            logger.warning("Dropped %s: %s", type(event).__name__, e)

    __call__ = handle

    def persist(self, event) -> None:
        if isinstance(event, MatchStart):
            self.current_match_id = self.db.open_match(
                event.map, event.gametype, event.hostname, started_at=event.ts,
            )
        elif isinstance(event, MatchEnd):
            if self.current_match_id is None:
                self.current_match_id = self.db.open_match_id()
            if self.current_match_id is not None:
                self.db.close_match(self.current_match_id, ended_at=event.ts)
            self.current_match_id = None
        elif isinstance(event, IdentityUpdate):
            self.db.upsert_player(event.name, guid=event.guid, seen_at=event.ts)
        elif isinstance(event, Kill):
            result = self.db.record_kill(
                self.current_match_id, event.killer, event.victim, event.cause, ts=event.ts,
            )
            if result is not None:
                self.current_match_id = result[0]

    def on_seed_complete(self, log_had_content: bool = True) -> None:
        """
        Reconcile the store with the state the seed pass ended in.

        A match still running at the end of the log is opened in the
        store so live kills attach to the right map. An open row on the
        same map left by a previous run is adopted instead. If
        the log says no match is running, a match left open by a
        previous run is closed.
        """
        match = self.match_state.match
        if match is None:
            stale_id = self.db.open_match_id() if log_had_content else None
            if stale_id is not None:
                try:
                    self.db.close_match(stale_id)
                    logger.info("Closed stale open match %s", stale_id)
                except StoreWriteFailure as e:
                    logger.warning("Could not close stale match %s: %s", stale_id, e)
            return
        if match.implicit:
            return
        # Restart mid-map: the previous run's open row is this match.
        open_id = self.db.open_match_id()
        if open_id is not None and self.db.get_match(open_id)['map'] == match.map:
            self.current_match_id = open_id
            logger.info("Resuming open match %s on %s", open_id, match.map)
            return
        try:
            self.current_match_id = self.db.open_match(
                match.map, match.gametype, match.hostname, started_at=match.started_at,
            )
        except StoreWriteFailure as e:
            logger.warning("Could not persist seeded match on %s: %s", match.map, e)

    def prime_from_status(self, provider, timeout: float) -> bool:
        """
        Announce the map the live server is on when the log gave no match.

        Sent through the normal pipeline as a synthetic MatchStart.
        """
        if self.match_state.match is not None:
            return False
        try:
            status = provider.get_status(timeout)
        except (LadderError, OSError) as e:
            logger.info("Prime skipped: %s", e)
            return False
        event = MatchStart(
            map=status.map or 'unknown',
            gametype=status.gametype or '0',
            hostname=status.hostname or '',
            info=dict(status.info),
            ts=time.time(),
            synthetic=True,
        )
        self.handle(event)
        logger.info("Primed match from live status: %s", event.map)
        return True
