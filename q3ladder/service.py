# q3ladder/service.py

import logging
from typing import Optional

from q3ladder.config import Settings
from q3ladder.database import Database, MatchDebouncePolicy
from q3ladder.match_state import MatchState
from q3ladder.pipeline import EventPipeline, PersistencePolicy
from q3ladder.snapshot import SnapshotBuilder
from q3ladder.status_client import StatusClient
from q3ladder.tailer import LogTailer

logger = logging.getLogger(__name__)


class LadderService:
    """Everything one process needs: store, match state, tailer, snapshots."""

    def __init__(self, settings: Optional[Settings] = None, db: Optional[Database] = None,
                 provider=None):
        self.settings = settings or Settings.from_env()
        s = self.settings
        self.db = db or Database(s.db_path, debounce=MatchDebouncePolicy(s.match_debounce))
        self.provider = provider if provider is not None else StatusClient(
            s.q3_host, s.q3_port, timeout_seconds=s.status_timeout,
        )
        self.match_state = MatchState(count_suicides=s.count_suicides)
        self.pipeline = EventPipeline(self.match_state, self.db, PersistencePolicy())
        self.tailer = LogTailer(s.log_path, self.pipeline.handle, backoff_seconds=s.follower_backoff)
        self.snapshots = SnapshotBuilder(
            self.match_state,
            self.db,
            provider=self.provider,
            timeout_seconds=s.status_timeout,
            cache_ttl=s.cache_ttl,
            bot_names=s.bot_names,
        )
        self.started = False

    def _after_seed(self) -> None:
        had_content = bool(self.tailer.seed_offset)
        if not had_content:
            # Nothing to replay: the store is the only memory of the open match.
            self.match_state.rebuild_from_store(self.db)
        self.pipeline.on_seed_complete(log_had_content=had_content)
        if self.settings.prime_from_status:
            self.pipeline.prime_from_status(self.provider, self.settings.status_timeout)

    def start(self) -> None:
        if self.started:
            return
        logger.info("Database: %s", self.db.db_path)
        self.tailer.start(on_seed_complete=self._after_seed)
        self.started = True

    def stop(self) -> None:
        if self.started:
            self.tailer.stop()
            self.started = False
        self.snapshots.close()
        self.db.close()
