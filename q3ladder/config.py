# q3ladder/config.py

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Mapping, Optional

from q3ladder.identity import DEFAULT_BOT_NAMES

DEFAULT_LOG_PATH = Path.home() / '.q3a' / 'excessiveplus' / 'games.log'
DEFAULT_DB_PATH = 'data/q3ladder.db'

# Timing
STATUS_TIMEOUT_SECONDS = 0.9
SNAPSHOT_CACHE_TTL_SECONDS = 1.0
MATCH_DEBOUNCE_SECONDS = 5.0
FOLLOWER_BACKOFF_SECONDS = 1.0

# Logging
LOG_LEVEL = 'INFO'
LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s'


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_float(value: Optional[str], default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(value: Optional[str], default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass
class Settings:
    """Process configuration, normally read from the environment."""

    log_path: Path = DEFAULT_LOG_PATH
    db_path: str = DEFAULT_DB_PATH
    q3_host: str = '127.0.0.1'
    q3_port: int = 27960
    status_timeout: float = STATUS_TIMEOUT_SECONDS
    cache_ttl: float = SNAPSHOT_CACHE_TTL_SECONDS
    match_debounce: float = MATCH_DEBOUNCE_SECONDS
    follower_backoff: float = FOLLOWER_BACKOFF_SECONDS
    bot_names: FrozenSet[str] = field(default_factory=lambda: DEFAULT_BOT_NAMES)
    count_suicides: bool = True
    prime_from_status: bool = True
    api_host: str = '127.0.0.1'
    api_port: int = 3000
    log_level: str = LOG_LEVEL

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Settings':
        env = os.environ if environ is None else environ
        bot_names = DEFAULT_BOT_NAMES
        raw_bots = env.get('Q3LADDER_BOT_NAMES')
        if raw_bots is not None and raw_bots.strip():
            bot_names = frozenset(n.strip() for n in raw_bots.split(',') if n.strip())

        return cls(
            log_path=Path(env.get('Q3_LOG') or DEFAULT_LOG_PATH),
            db_path=env.get('Q3LADDER_DB_PATH') or DEFAULT_DB_PATH,
            q3_host=env.get('Q3_HOST') or '127.0.0.1',
            q3_port=_env_int(env.get('Q3_PORT'), 27960),
            status_timeout=_env_float(env.get('Q3LADDER_STATUS_TIMEOUT'), STATUS_TIMEOUT_SECONDS),
            cache_ttl=_env_float(env.get('Q3LADDER_CACHE_TTL'), SNAPSHOT_CACHE_TTL_SECONDS),
            match_debounce=_env_float(env.get('Q3LADDER_MATCH_DEBOUNCE'), MATCH_DEBOUNCE_SECONDS),
            follower_backoff=_env_float(env.get('Q3LADDER_FOLLOWER_BACKOFF'), FOLLOWER_BACKOFF_SECONDS),
            bot_names=bot_names,
            count_suicides=_env_bool(env.get('Q3LADDER_COUNT_SUICIDES'), True),
            prime_from_status=_env_bool(env.get('Q3LADDER_PRIME_FROM_STATUS'), True),
            api_host=env.get('Q3LADDER_API_HOST') or '127.0.0.1',
            api_port=_env_int(env.get('Q3LADDER_API_PORT'), 3000),
            log_level=(env.get('Q3LADDER_LOG_LEVEL') or LOG_LEVEL).upper(),
        )
