# q3ladder/identity.py

"""
Player identity from noisy Quake III display names.

Display names carry inline color markup: ``^`` followed by a digit
(``^1Foo``) or ``^x`` followed by six hex digits (``^xFF8800Foo``). The
parser keeps those tokens; this module is the only place that removes
them.

Identity key = colors removed, non-printable characters dropped,
whitespace trimmed, case-folded. ``^1Foo``, ``^2foo`` and ``FOO`` are
the same player. The game credits environmental deaths to ``<world>``,
which is never a player.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Optional

COLOR_TOKEN = re.compile(r'\^(?:[xX][0-9a-fA-F]{6}|[0-9])')

WORLD_NAMES = frozenset({'<world>', 'world', ''})

# Stock Quake III Arena bot roster
DEFAULT_BOT_NAMES = frozenset({
    'Wrack', 'Visor', 'Gorre', 'Angel', 'Mynx', 'Keel', 'Orbb', 'Cadavre',
    'TankJr', 'Lucy', 'Sarge', 'Grunt', 'Ranger', 'Biker', 'Sorlag',
    'Mr.Gauntlet', 'Anarki', 'Bitterman', 'Hunter', 'Major', 'Uriel',
    'Daemia', 'Klesk', 'Stripe', 'Bones', 'Patriot', 'Xaero', 'Slash',
    'Phobos', 'Razor', 'Doom', 'LakerboT',
})


@dataclass(frozen=True)
class Identity:
    key: str
    display_name: str
    plain_name: str


def strip_colors(name: Optional[str]) -> str:
    """Remove color tokens but keep case and inner spacing."""
    if not name:
        return ''
    return COLOR_TOKEN.sub('', name)


def plain_name(name: Optional[str]) -> str:
    """Color-stripped, printable-only, trimmed display form."""
    stripped = strip_colors(name)
    return ''.join(ch for ch in stripped if ch.isprintable()).strip()


def identity_key(name: Optional[str]) -> str:
    return plain_name(name).casefold()


def is_environment(name: Optional[str]) -> bool:
    """True for the non-player pseudo-entity (and for blank names)."""
    return plain_name(name) in WORLD_NAMES


def resolve(name: Optional[str]) -> Optional[Identity]:
    """Return the identity for a raw display name, or None if unresolved."""
    if is_environment(name):
        return None
    key = identity_key(name)
    if not key:
        return None
    return Identity(key=key, display_name=name, plain_name=plain_name(name))


@lru_cache(maxsize=16)
def _blocklist_keys(names: frozenset) -> frozenset:
    return frozenset(identity_key(n) for n in names if identity_key(n))


def normalize_blocklist(names: Iterable[str]) -> frozenset:
    return _blocklist_keys(frozenset(names))


def is_bot(name: Optional[str], blocklist: Iterable[str] = DEFAULT_BOT_NAMES) -> bool:
    """Case-insensitive, color-stripped membership in the bot blocklist."""
    key = identity_key(name)
    if not key:
        return False
    return key in normalize_blocklist(blocklist)
