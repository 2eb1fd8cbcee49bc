# q3ladder/parser.py

import logging
import re
import time
from typing import Callable, Dict, Optional, Sequence, Union

from q3ladder.errors import ParseError
from q3ladder.events import IdentityUpdate, Kill, MatchEnd, MatchStart

logger = logging.getLogger(__name__)

Event = Union[MatchStart, MatchEnd, IdentityUpdate, Kill]
RejectHandler = Callable[[ParseError], None]

# "  3:07 Kill: ..." - minutes may run past two digits on long maps
ELAPSED_PREFIX = re.compile(r'^\s*\d+:\d+\s+')

INIT_GAME = re.compile(r'^InitGame:\s*(\\.*)$')
SHUTDOWN_GAME = re.compile(r'^ShutdownGame:\s*$')
USERINFO_CHANGED = re.compile(r'^ClientUserinfoChanged:\s*(\d+)\s+(.*)$')
KILL = re.compile(
    r'^Kill:\s*(\d+)\s+(\d+)(?:\s+(\d+))?\s*:\s*'
    r'(.*?)\s+killed\s+(.*?)\s+by\s+([A-Za-z0-9_]+)\s*$'
)

GUID_KEYS = ('cl_guid', 'guid', 'sguid', 'pb_guid')


def strip_elapsed(line: str) -> str:
    """Drop the optional "minutes:seconds" marker and surrounding whitespace."""
    return ELAPSED_PREFIX.sub('', line, count=1).strip()


def parse_info_string(blob: str) -> Dict[str, str]:
    r"""
    Parse a ``\key\value\key\value`` attribute blob.

    Values are kept verbatim (color tokens included). The leading
    backslash is optional (userinfo lines omit it). A trailing key
    without a value is ignored.
    """
    out: Dict[str, str] = {}
    if not blob:
        return out
    if not blob.startswith('\\'):
        blob = '\\' + blob
    parts = blob.split('\\')
    for i in range(1, len(parts) - 1, 2):
        key = parts[i]
        if key:
            out[key] = parts[i + 1]
    return out


def match_init_game(line: str, ts: float) -> Optional[MatchStart]:
    if 'InitGame:' not in line:
        return None
    m = INIT_GAME.match(line)
    if not m:
        raise ParseError('InitGame', line)
    info = parse_info_string(m.group(1))
    if not info:
        raise ParseError('InitGame', line)
    return MatchStart(
        map=info.get('mapname') or 'unknown',
        gametype=info.get('g_gametype') or info.get('gametype') or '0',
        hostname=info.get('sv_hostname') or info.get('hostname') or '',
        info=info,
        ts=ts,
    )


def match_shutdown_game(line: str, ts: float) -> Optional[MatchEnd]:
    if 'ShutdownGame:' not in line:
        return None
    if not SHUTDOWN_GAME.match(line):
        raise ParseError('ShutdownGame', line)
    return MatchEnd(ts=ts)


def match_userinfo_changed(line: str, ts: float) -> Optional[IdentityUpdate]:
    if 'ClientUserinfoChanged:' not in line:
        return None
    m = USERINFO_CHANGED.match(line)
    if not m:
        raise ParseError('ClientUserinfoChanged', line)
    info = parse_info_string(m.group(2))
    if 'n' not in info and 'name' not in info:
        raise ParseError('ClientUserinfoChanged', line)
    name = info.get('n', info.get('name', ''))
    guid = next((info[k] for k in GUID_KEYS if info.get(k)), None)
    return IdentityUpdate(slot=int(m.group(1)), name=name, guid=guid, info=info, ts=ts)


def match_kill(line: str, ts: float) -> Optional[Kill]:
    if 'Kill:' not in line:
        return None
    m = KILL.match(line)
    if not m:
        raise ParseError('Kill', line)
    killer_slot, victim_slot, cause_id, killer, victim, cause = m.groups()
    return Kill(
        killer_slot=int(killer_slot),
        victim_slot=int(victim_slot),
        cause_id=int(cause_id) if cause_id is not None else None,
        killer=killer,
        victim=victim,
        cause=cause,
        ts=ts,
    )


DEFAULT_MATCHERS = (
    match_init_game,
    match_shutdown_game,
    match_userinfo_changed,
    match_kill,
)


class LogLineParser:
    """
    Translate games.log lines into events.

    Matchers are tried in order; the first one that recognizes its
    keyword decides the outcome. A matcher returns an event, returns
    None when its keyword is absent, or raises ParseError when the
    keyword is present but the line is malformed. Malformed lines are
    dropped here and never propagate.
    """

    def __init__(self, matchers: Sequence[Callable[[str, float], Optional[Event]]] = DEFAULT_MATCHERS):
        self.matchers = tuple(matchers)

    def parse(self, raw_line: str, ts: Optional[float] = None,
              on_reject: Optional[RejectHandler] = None) -> Optional[Event]:
        if not raw_line:
            return None
        line = strip_elapsed(raw_line.rstrip('\r\n'))
        if not line:
            return None
        if ts is None:
            ts = time.time()

        for matcher in self.matchers:
            try:
                event = matcher(line, ts)
            except ParseError as e:
                logger.debug("Dropped line: %s", e)
                if on_reject is not None:
                    on_reject(e)
                return None
            if event is not None:
                return event
        return None


_default_parser = LogLineParser()


def parse_line(raw_line: str, ts: Optional[float] = None,
               on_reject: Optional[RejectHandler] = None) -> Optional[Event]:
    """Parse one line with the default matcher order."""
    return _default_parser.parse(raw_line, ts=ts, on_reject=on_reject)
