# q3ladder/database.py

import logging
import os
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from q3ladder import identity
from q3ladder.calculator import compute_kd, page, rank_rows
from q3ladder.errors import IdentityUnresolved, StoreWriteFailure

logger = logging.getLogger(__name__)

PLACEHOLDER_MAP = 'unknown'
PLACEHOLDER_GAMETYPE = '0'
HOUR_SECONDS = 3600
DAY_SECONDS = 86400


@dataclass(frozen=True)
class MatchDebouncePolicy:
    """
    When to reuse the latest match instead of opening a new one.

    Seed replays and boot-time priming can announce the same map twice
    within a few seconds; those collapse onto one row.
    """
    window_seconds: float = 5.0

    def should_reuse(self, latest: Optional[sqlite3.Row], map_name: str, started_at: float) -> bool:
        if self.window_seconds <= 0:
            return False
        if latest is None or latest["ended_at"] is not None:
            return False
        if latest['map'] != map_name:
            return False
        return abs(started_at - (latest['started_at'] or 0)) <= self.window_seconds


class Database:
    """Handle all database operations."""

    def __init__(self, db_path: str = 'data/q3ladder.db',
                 debounce: Optional[MatchDebouncePolicy] = None):
        self.db_path = self._resolve_db_path(db_path)
        self.debounce = debounce or MatchDebouncePolicy()
        self.conn = None
        self._lock = threading.RLock()
        self.init_database()

    @staticmethod
    def _resolve_db_path(db_path: str) -> str:
        """Return an absolute database path anchored to project root when relative."""
        if db_path == ':memory:':
            return db_path
        path = Path(db_path)
        if path.is_absolute():
            return str(path)

        project_root = Path(__file__).resolve().parents[1]
        return str(project_root / path)

    def init_database(self):
        """Create tables if they don't exist."""
        if self.db_path != ':memory:':
            db_dir = os.path.dirname(self.db_path)
            if db_dir:
                try:
                    os.makedirs(db_dir, exist_ok=True)
                except OSError as e:
                    raise RuntimeError(f"Failed to create database directory '{db_dir}': {e}")

        # The tailer thread writes while HTTP worker threads read.
        self.conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA busy_timeout = 30000")
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.conn.execute("PRAGMA synchronous = NORMAL")
        self._set_wal_mode_best_effort()

        cursor = self.conn.cursor()
        cursor.executescript("""
            CREATE TABLE IF NOT EXISTS players (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                identity_key TEXT UNIQUE NOT NULL,
                display_name TEXT NOT NULL,
                plain_name TEXT NOT NULL,
                guid TEXT UNIQUE,
                first_seen REAL NOT NULL,
                last_seen REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS player_aliases (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                player_id INTEGER NOT NULL REFERENCES players(id),
                display_name TEXT NOT NULL,
                alias_key TEXT,
                first_seen REAL NOT NULL,
                last_seen REAL NOT NULL,
                UNIQUE(player_id, display_name)
            );

            CREATE TABLE IF NOT EXISTS matches (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                map TEXT NOT NULL,
                gametype TEXT,
                hostname TEXT,
                started_at REAL NOT NULL,
                ended_at REAL
            );

            CREATE TABLE IF NOT EXISTS frags (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                match_id INTEGER NOT NULL REFERENCES matches(id) ON DELETE CASCADE,
                killer_id INTEGER REFERENCES players(id),
                victim_id INTEGER NOT NULL REFERENCES players(id),
                cause TEXT,
                ts REAL NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_aliases_player_id ON player_aliases(player_id);
            CREATE INDEX IF NOT EXISTS idx_matches_ended_at ON matches(ended_at);
            CREATE INDEX IF NOT EXISTS idx_frags_match_id ON frags(match_id);
            CREATE INDEX IF NOT EXISTS idx_frags_killer_id ON frags(killer_id);
            CREATE INDEX IF NOT EXISTS idx_frags_victim_id ON frags(victim_id);
            CREATE INDEX IF NOT EXISTS idx_frags_ts ON frags(ts);
        """)
        self._migrate_schema()
        self.conn.commit()

    def _migrate_schema(self) -> None:
        # Databases created before hostname tracking
        self._add_column_if_missing("matches", "hostname TEXT", "hostname")
        self._add_column_if_missing("players", "guid TEXT", "guid")
        # Databases created before alias lookups
        self._add_column_if_missing("player_aliases", "alias_key TEXT", "alias_key")
        cursor = self.conn.cursor()
        cursor.execute("SELECT id, display_name FROM player_aliases WHERE alias_key IS NULL")
        for row in cursor.fetchall():
            cursor.execute(
                "UPDATE player_aliases SET alias_key = ? WHERE id = ?",
                (identity.identity_key(row["display_name"]), row["id"]),
            )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_aliases_alias_key ON player_aliases(alias_key)")

    def _commit_with_retry(self, retries: int = 8, delay_seconds: float = 0.25, context: str = "commit") -> None:
        """
        Retry commit on transient SQLITE_BUSY/locked errors.
        """
        last_error = None
        for attempt in range(retries):
            try:
                self.conn.commit()
                return
            except sqlite3.OperationalError as e:
                last_error = e
                if "locked" not in str(e).lower() and "busy" not in str(e).lower():
                    raise
                if attempt == retries - 1:
                    break
                time.sleep(delay_seconds)
        raise StoreWriteFailure(
            f"Failed to {context}: database remained locked after {retries} attempts ({last_error})"
        )

    def _set_wal_mode_best_effort(self, retries: int = 5, delay_seconds: float = 0.2) -> None:
        """Try to enable WAL without failing startup if the DB is temporarily locked."""
        if self.db_path == ':memory:':
            return
        for attempt in range(retries):
            try:
                self.conn.execute("PRAGMA journal_mode = WAL")
                return
            except sqlite3.OperationalError as e:
                msg = str(e).lower()
                if "locked" not in msg and "busy" not in msg:
                    raise
                if attempt == retries - 1:
                    logger.warning("Could not enable WAL mode (database locked); continuing. (%s)", e)
                    return
                time.sleep(delay_seconds)

    def _get_table_columns(self, table_name: str) -> set:
        cursor = self.conn.cursor()
        cursor.execute(f"PRAGMA table_info({table_name})")
        return {row["name"] for row in cursor.fetchall()}

    def _add_column_if_missing(self, table_name: str, column_sql: str, column_name: str) -> None:
        columns = self._get_table_columns(table_name)
        if column_name not in columns:
            cursor = self.conn.cursor()
            cursor.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_sql}")

    @contextmanager
    def _transaction(self, context: str):
        """One atomic unit of work; SQLite errors roll back and surface as StoreWriteFailure."""
        with self._lock:
            cursor = self.conn.cursor()
            try:
                yield cursor
                self._commit_with_retry(context=context)
            except Exception as e:
                self.conn.rollback()
                if isinstance(e, sqlite3.Error):
                    raise StoreWriteFailure(f"Failed to {context}: {e}") from e
                raise

    def _fetchall(self, sql: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(sql, tuple(params))
            return cursor.fetchall()

    def _fetchone(self, sql: str, params: Iterable[Any] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(sql, tuple(params))
            return cursor.fetchone()

    # ------------------------------------------------------------------
    # Players
    # ------------------------------------------------------------------

    def _upsert_player_in(self, cursor: sqlite3.Cursor, raw_name: Optional[str],
                          guid: Optional[str] = None, seen_at: Optional[float] = None) -> Optional[int]:
        ident = identity.resolve(raw_name)
        if ident is None:
            return None
        seen_at = seen_at if seen_at is not None else time.time()

        row = None
        if guid:
            # A known GUID wins over the name: renames become aliases.
            cursor.execute("SELECT id, guid FROM players WHERE guid = ?", (guid,))
            row = cursor.fetchone()
        if row is None:
            row = self._lookup_player_in(cursor, ident.key)

        if row is None:
            cursor.execute(
                """
                INSERT OR IGNORE INTO players (identity_key, display_name, plain_name, guid, first_seen, last_seen)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (ident.key, ident.display_name, ident.plain_name, guid or None, seen_at, seen_at),
            )
            # Re-read: a concurrent insert for the same key resolves to that row.
            cursor.execute("SELECT id, guid FROM players WHERE identity_key = ?", (ident.key,))
            row = cursor.fetchone()
            if row is None and guid:
                cursor.execute("SELECT id, guid FROM players WHERE guid = ?", (guid,))
                row = cursor.fetchone()
            if row is None:
                raise StoreWriteFailure(f"Failed to create player '{ident.key}'")
            player_id = row["id"]
        else:
            player_id = row["id"]
            cursor.execute(
                "UPDATE players SET display_name = ?, plain_name = ?, last_seen = ? WHERE id = ?",
                (ident.display_name, ident.plain_name, seen_at, player_id),
            )
            if guid and row["guid"] is None:
                cursor.execute("UPDATE players SET guid = ? WHERE id = ?", (guid, player_id))

        cursor.execute(
            """
            INSERT INTO player_aliases (player_id, display_name, alias_key, first_seen, last_seen)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(player_id, display_name) DO UPDATE SET last_seen = excluded.last_seen
            """,
            (player_id, ident.display_name, ident.key, seen_at, seen_at),
        )
        return player_id

    @staticmethod
    def _lookup_player_in(cursor: sqlite3.Cursor, key: str) -> Optional[sqlite3.Row]:
        """
        Resolve a name key to a player row.

        The most recently seen holder of the key as an alias wins, so a
        name taken on through a GUID rename points at the GUID's player.
        Falls back to the player's own identity key.
        """
        cursor.execute(
            """
            SELECT p.id, p.guid
            FROM player_aliases a
            JOIN players p ON p.id = a.player_id
            WHERE a.alias_key = ?
            ORDER BY a.last_seen DESC, a.id DESC
            LIMIT 1
            """,
            (key,),
        )
        row = cursor.fetchone()
        if row is None:
            cursor.execute("SELECT id, guid FROM players WHERE identity_key = ?", (key,))
            row = cursor.fetchone()
        return row

    def upsert_player(self, raw_name: Optional[str], guid: Optional[str] = None,
                      seen_at: Optional[float] = None) -> Optional[int]:
        """
        Resolve or create the player for a raw display name.

        Returns None for unresolved names (blank or environment); no row
        is ever created for those.
        """
        if identity.resolve(raw_name) is None:
            return None
        with self._transaction(f"upsert player {raw_name!r}") as cursor:
            return self._upsert_player_in(cursor, raw_name, guid=guid, seen_at=seen_at)

    def get_player(self, name: str) -> Optional[Dict]:
        """Look up a player by any display form of their name."""
        key = identity.identity_key(name)
        if not key:
            return None
        with self._lock:
            found = self._lookup_player_in(self.conn.cursor(), key)
        if found is None:
            return None
        row = self._fetchone("SELECT * FROM players WHERE id = ?", (found["id"],))
        return dict(row) if row else None

    def get_player_aliases(self, player_id: int) -> List[Dict]:
        rows = self._fetchall(
            """
            SELECT display_name, first_seen, last_seen
            FROM player_aliases
            WHERE player_id = ?
            ORDER BY last_seen DESC, id DESC
            """,
            (player_id,),
        )
        return [
            {**dict(r), 'name': identity.plain_name(r['display_name'])}
            for r in rows
        ]

    def list_players(self, limit: int = 50, search: str = '') -> List[Dict]:
        limit = max(1, min(int(limit), 500))
        search_key = identity.identity_key(search)
        if search_key:
            rows = self._fetchall(
                """
                SELECT identity_key, display_name, plain_name, first_seen, last_seen
                FROM players
                WHERE identity_key LIKE ?
                ORDER BY last_seen DESC
                LIMIT ?
                """,
                (f"%{search_key}%", limit),
            )
        else:
            rows = self._fetchall(
                """
                SELECT identity_key, display_name, plain_name, first_seen, last_seen
                FROM players
                ORDER BY last_seen DESC
                LIMIT ?
                """,
                (limit,),
            )
        return [
            {
                'identity': r['identity_key'],
                'display_name': r['display_name'],
                'name': r['plain_name'],
                'first_seen': r['first_seen'],
                'last_seen': r['last_seen'],
            }
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Matches
    # ------------------------------------------------------------------

    def _open_match_in(self, cursor: sqlite3.Cursor, map_name: str, gametype: str,
                       hostname: str, started_at: float) -> int:
        cursor.execute("SELECT * FROM matches ORDER BY id DESC LIMIT 1")
        latest = cursor.fetchone()
        if self.debounce.should_reuse(latest, map_name, started_at):
            if hostname and not latest["hostname"]:
                cursor.execute("UPDATE matches SET hostname = ? WHERE id = ?", (hostname, latest["id"]))
            logger.debug("Reusing match %s for duplicate start on %s", latest["id"], map_name)
            return latest["id"]

        # At most one open match.
        cursor.execute(
            "UPDATE matches SET ended_at = ? WHERE ended_at IS NULL",
            (started_at,),
        )
        cursor.execute(
            "INSERT INTO matches (map, gametype, hostname, started_at, ended_at) VALUES (?, ?, ?, ?, NULL)",
            (map_name, gametype, hostname, started_at),
        )
        return cursor.lastrowid

    def open_match(self, map_name: str, gametype: str = PLACEHOLDER_GAMETYPE,
                   hostname: str = '', started_at: Optional[float] = None) -> int:
        """Open a match, or reuse the latest one when it is a debounced duplicate."""
        started_at = started_at if started_at is not None else time.time()
        map_name = map_name or PLACEHOLDER_MAP
        with self._transaction(f"open match on {map_name}") as cursor:
            match_id = self._open_match_in(cursor, map_name, gametype or PLACEHOLDER_GAMETYPE,
                                           hostname or '', started_at)
        return match_id

    def close_match(self, match_id: int, ended_at: Optional[float] = None) -> bool:
        """Close a match. Returns False when it was already closed (or unknown)."""
        ended_at = ended_at if ended_at is not None else time.time()
        with self._transaction(f"close match {match_id}") as cursor:
            cursor.execute(
                "UPDATE matches SET ended_at = ? WHERE id = ? AND ended_at IS NULL",
                (ended_at, match_id),
            )
            return cursor.rowcount > 0

    def open_match_id(self) -> Optional[int]:
        row = self._fetchone("SELECT id FROM matches WHERE ended_at IS NULL ORDER BY id DESC LIMIT 1")
        return row["id"] if row else None

    def get_match(self, match_id: int) -> Optional[Dict]:
        row = self._fetchone("SELECT * FROM matches WHERE id = ?", (match_id,))
        return dict(row) if row else None

    def _current_match_in(self, cursor: sqlite3.Cursor, match_id: Optional[int], ts: float) -> int:
        if match_id is not None:
            return match_id
        cursor.execute("SELECT id FROM matches WHERE ended_at IS NULL ORDER BY id DESC LIMIT 1")
        row = cursor.fetchone()
        if row is not None:
            return row["id"]
        # Missed InitGame (restart mid-map, logging hiccup): keep the kill.
        logger.info("No open match for frag; opening placeholder match")
        return self._open_match_in(cursor, PLACEHOLDER_MAP, PLACEHOLDER_GAMETYPE, '', ts)

    # ------------------------------------------------------------------
    # Frags
    # ------------------------------------------------------------------

    def record_frag(self, match_id: Optional[int], killer_id: Optional[int], victim_id: int,
                    cause: Optional[str], ts: Optional[float] = None) -> int:
        """Insert a frag for already-resolved players. killer_id None = environment."""
        if victim_id is None:
            raise IdentityUnresolved("A frag needs a victim")
        ts = ts if ts is not None else time.time()
        with self._transaction("record frag") as cursor:
            match_id = self._current_match_in(cursor, match_id, ts)
            cursor.execute(
                "INSERT INTO frags (match_id, killer_id, victim_id, cause, ts) VALUES (?, ?, ?, ?, ?)",
                (match_id, killer_id, victim_id, cause, ts),
            )
            return cursor.lastrowid

    def record_kill(self, match_id: Optional[int], killer_name: Optional[str], victim_name: Optional[str],
                    cause: Optional[str], ts: Optional[float] = None) -> Optional[Tuple[int, int]]:
        """
        Resolve both players and write the frag in one transaction.

        Returns (match_id, frag_id), or None when the victim is
        unresolved. A frag never references an uncommitted player.
        """
        if identity.resolve(victim_name) is None:
            logger.debug("Skipping kill with unresolved victim %r", victim_name)
            return None
        ts = ts if ts is not None else time.time()
        with self._transaction("record kill") as cursor:
            victim_id = self._upsert_player_in(cursor, victim_name, seen_at=ts)
            killer_id = self._upsert_player_in(cursor, killer_name, seen_at=ts)
            match_id = self._current_match_in(cursor, match_id, ts)
            cursor.execute(
                "INSERT INTO frags (match_id, killer_id, victim_id, cause, ts) VALUES (?, ?, ?, ?, ?)",
                (match_id, killer_id, victim_id, cause, ts),
            )
            return match_id, cursor.lastrowid

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def ladder(self, limit: Optional[int] = 25, offset: int = 0, include_bots: bool = False,
               bot_names: Iterable[str] = identity.DEFAULT_BOT_NAMES) -> List[Dict]:
        """
        Career totals over all persisted frags.

        Self-kills count as deaths, never as kills. Players with no
        kills and no deaths are left out.
        """
        rows = self._fetchall("""
            SELECT p.identity_key, p.display_name, p.plain_name,
                   COALESCE(k.kills, 0) AS kills,
                   COALESCE(d.deaths, 0) AS deaths
            FROM players p
            LEFT JOIN (
                SELECT killer_id, COUNT(*) AS kills
                FROM frags
                WHERE killer_id IS NOT NULL AND killer_id != victim_id
                GROUP BY killer_id
            ) k ON k.killer_id = p.id
            LEFT JOIN (
                SELECT victim_id, COUNT(*) AS deaths
                FROM frags
                GROUP BY victim_id
            ) d ON d.victim_id = p.id
            WHERE COALESCE(k.kills, 0) + COALESCE(d.deaths, 0) > 0
        """)

        blocklist = identity.normalize_blocklist(bot_names)
        entries = []
        for r in rows:
            if not include_bots and r['identity_key'] in blocklist:
                continue
            entries.append({
                'identity': r['identity_key'],
                'display_name': r['display_name'],
                'name': r['plain_name'],
                'kills': r['kills'],
                'deaths': r['deaths'],
            })
        return page(rank_rows(entries), limit, offset)

    def match_counters(self, match_id: int) -> List[Dict]:
        """Per-player kills/deaths/suicides inside one match."""
        rows = self._fetchall(
            """
            SELECT p.identity_key, p.display_name, p.plain_name,
                   SUM(CASE WHEN f.killer_id = p.id AND f.victim_id != p.id THEN 1 ELSE 0 END) AS kills,
                   SUM(CASE WHEN f.victim_id = p.id THEN 1 ELSE 0 END) AS deaths,
                   SUM(CASE WHEN f.killer_id = p.id AND f.victim_id = p.id THEN 1 ELSE 0 END) AS suicides
            FROM frags f
            JOIN players p ON p.id = f.killer_id OR p.id = f.victim_id
            WHERE f.match_id = ?
            GROUP BY p.id
            """,
            (match_id,),
        )
        entries = [
            {
                'identity': r['identity_key'],
                'display_name': r['display_name'],
                'name': r['plain_name'],
                'kills': r['kills'],
                'deaths': r['deaths'],
                'suicides': r['suicides'],
            }
            for r in rows
        ]
        return rank_rows(entries)

    def recent_matches(self, limit: int = 10) -> List[Dict]:
        limit = max(1, min(int(limit), 100))
        rows = self._fetchall(
            """
            SELECT m.id, m.map, m.gametype, m.hostname, m.started_at, m.ended_at,
                   COUNT(f.id) AS frags
            FROM matches m
            LEFT JOIN frags f ON f.match_id = m.id
            GROUP BY m.id
            ORDER BY m.id DESC
            LIMIT ?
            """,
            (limit,),
        )
        return [dict(r) for r in rows]

    def match_detail(self, match_id: int) -> Optional[Dict]:
        """Match metadata plus its per-player scoreboard."""
        match = self.get_match(match_id)
        if match is None:
            return None
        frag_count = self._fetchone("SELECT COUNT(*) AS n FROM frags WHERE match_id = ?", (match_id,))
        match['frags'] = frag_count['n']
        match['scoreboard'] = self.match_counters(match_id)
        return match

    def player_profile(self, name: str, since_days: Optional[float] = None, top_n: int = 10,
                       bot_names: Iterable[str] = identity.DEFAULT_BOT_NAMES,
                       now: Optional[float] = None) -> Optional[Dict]:
        """
        Career (or trailing-window) breakdown for one player.

        Returns None for unknown players. Opponent lists are split into
        humans and known bots and capped at top_n each; the hourly
        histogram always has 24 buckets ending with the current hour.
        """
        player = self.get_player(name)
        if player is None:
            return None
        pid = player['id']
        now = now if now is not None else time.time()
        top_n = max(1, int(top_n))
        since_ts = now - float(since_days) * DAY_SECONDS if since_days is not None else None
        window = " AND f.ts >= ?" if since_ts is not None else ""
        wparams: Tuple = (since_ts,) if since_ts is not None else ()

        totals_row = self._fetchone(
            f"""
            SELECT
                SUM(CASE WHEN f.killer_id = ? AND f.victim_id != ? THEN 1 ELSE 0 END) AS kills,
                SUM(CASE WHEN f.victim_id = ? THEN 1 ELSE 0 END) AS deaths,
                SUM(CASE WHEN f.killer_id = ? AND f.victim_id = ? THEN 1 ELSE 0 END) AS suicides,
                SUM(CASE WHEN f.victim_id = ? AND f.killer_id IS NULL THEN 1 ELSE 0 END) AS environment_deaths
            FROM frags f
            WHERE (f.killer_id = ? OR f.victim_id = ?){window}
            """,
            (pid, pid, pid, pid, pid, pid, pid, pid) + wparams,
        )
        kills = totals_row['kills'] or 0
        deaths = totals_row['deaths'] or 0

        kills_by_cause = {
            r['cause'] or 'UNKNOWN': r['n']
            for r in self._fetchall(
                f"""
                SELECT f.cause, COUNT(*) AS n FROM frags f
                WHERE f.killer_id = ? AND f.victim_id != ?{window}
                GROUP BY f.cause ORDER BY n DESC
                """,
                (pid, pid) + wparams,
            )
        }
        deaths_by_cause = {
            r['cause'] or 'UNKNOWN': r['n']
            for r in self._fetchall(
                f"""
                SELECT f.cause, COUNT(*) AS n FROM frags f
                WHERE f.victim_id = ?{window}
                GROUP BY f.cause ORDER BY n DESC
                """,
                (pid,) + wparams,
            )
        }

        most_killed = self._opponents(
            f"""
            SELECT o.identity_key, o.display_name, o.plain_name, COUNT(*) AS n
            FROM frags f JOIN players o ON o.id = f.victim_id
            WHERE f.killer_id = ? AND f.victim_id != ?{window}
            GROUP BY o.id ORDER BY n DESC, o.identity_key ASC
            """,
            (pid, pid) + wparams, top_n, bot_names,
        )
        killed_by = self._opponents(
            f"""
            SELECT o.identity_key, o.display_name, o.plain_name, COUNT(*) AS n
            FROM frags f JOIN players o ON o.id = f.killer_id
            WHERE f.victim_id = ? AND f.killer_id != ?{window}
            GROUP BY o.id ORDER BY n DESC, o.identity_key ASC
            """,
            (pid, pid) + wparams, top_n, bot_names,
        )

        return {
            'player': {
                'identity': player['identity_key'],
                'display_name': player['display_name'],
                'name': player['plain_name'],
                'guid': player['guid'],
                'first_seen': player['first_seen'],
                'last_seen': player['last_seen'],
            },
            'since_days': since_days,
            'totals': {
                'kills': kills,
                'deaths': deaths,
                'kd': compute_kd(kills, deaths),
                'suicides': totals_row['suicides'] or 0,
                'environment_deaths': totals_row['environment_deaths'] or 0,
                'kills_by_cause': kills_by_cause,
                'deaths_by_cause': deaths_by_cause,
            },
            'most_killed': most_killed,
            'killed_by': killed_by,
            'hourly_activity': self._hourly_activity(pid, now),
            'aliases': self.get_player_aliases(pid),
        }

    def _opponents(self, sql: str, params: Tuple, top_n: int,
                   bot_names: Iterable[str]) -> Dict[str, List[Dict]]:
        blocklist = identity.normalize_blocklist(bot_names)
        humans: List[Dict] = []
        bots: List[Dict] = []
        for r in self._fetchall(sql, params):
            bucket = bots if r['identity_key'] in blocklist else humans
            if len(bucket) >= top_n:
                continue
            bucket.append({
                'identity': r['identity_key'],
                'display_name': r['display_name'],
                'name': r['plain_name'],
                'count': r['n'],
            })
        return {'humans': humans, 'bots': bots}

    def _hourly_activity(self, player_id: int, now: float) -> List[Dict]:
        end = (int(now) // HOUR_SECONDS + 1) * HOUR_SECONDS
        start = end - 24 * HOUR_SECONDS
        buckets = [
            {'hour_start': start + i * HOUR_SECONDS, 'kills': 0, 'deaths': 0}
            for i in range(24)
        ]
        rows = self._fetchall(
            """
            SELECT killer_id, victim_id, ts FROM frags
            WHERE (killer_id = ? OR victim_id = ?) AND ts >= ? AND ts < ?
            """,
            (player_id, player_id, start, end),
        )
        for r in rows:
            idx = int((r['ts'] - start) // HOUR_SECONDS)
            if not 0 <= idx < 24:
                continue
            if r['victim_id'] == player_id:
                buckets[idx]['deaths'] += 1
            elif r['killer_id'] == player_id:
                buckets[idx]['kills'] += 1
        return buckets

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
