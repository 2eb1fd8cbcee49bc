# q3ladder/events.py

import time
from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass(frozen=True)
class MatchStart:
    """InitGame: a map was loaded."""
    map: str
    gametype: str
    hostname: str = ''
    info: Dict[str, str] = field(default_factory=dict, compare=False)
    ts: float = field(default_factory=time.time, compare=False)
    seed: bool = False
    synthetic: bool = False


@dataclass(frozen=True)
class MatchEnd:
    """ShutdownGame: the current map ended."""
    ts: float = field(default_factory=time.time, compare=False)
    seed: bool = False


@dataclass(frozen=True)
class IdentityUpdate:
    """ClientUserinfoChanged: a client slot (re)announced its name."""
    slot: int
    name: str
    guid: Optional[str] = None
    info: Dict[str, str] = field(default_factory=dict, compare=False)
    ts: float = field(default_factory=time.time, compare=False)
    seed: bool = False


@dataclass(frozen=True)
class Kill:
    """Kill: <killer> killed <victim> by <cause>."""
    killer_slot: int
    victim_slot: int
    killer: str
    victim: str
    cause: str
    cause_id: Optional[int] = None
    ts: float = field(default_factory=time.time, compare=False)
    seed: bool = False
