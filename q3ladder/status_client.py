from __future__ import annotations

import logging
import re
import socket
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from q3ladder.errors import ProviderTimeout, ProviderUnavailable
from q3ladder.parser import parse_info_string

logger = logging.getLogger(__name__)

PLAYER_LINE = re.compile(r'^\s*(-?\d+)\s+(-?\d+)\s+"(.*)"\s*$')


@dataclass
class StatusPlayer:
    name: str
    score: int
    ping: int


@dataclass
class LiveStatus:
    """Point-in-time roster; score is the server's kill count for the session."""
    info: Dict[str, str] = field(default_factory=dict)
    players: List[StatusPlayer] = field(default_factory=list)
    received_at: float = field(default_factory=time.time)

    @property
    def map(self) -> Optional[str]:
        return self.info.get('mapname')

    @property
    def gametype(self) -> Optional[str]:
        return self.info.get('g_gametype') or self.info.get('gametype')

    @property
    def hostname(self) -> Optional[str]:
        return self.info.get('sv_hostname') or self.info.get('hostname')


class StatusClient:
    """Query a Quake III server with the connectionless `getstatus` command."""

    PREFIX = b"\xff\xff\xff\xff"
    COMMAND = b"getstatus\n"
    RESPONSE_MARKER = "statusResponse"
    MAX_PACKET = 65535

    def __init__(self, host: str = "127.0.0.1", port: int = 27960, timeout_seconds: float = 1.2):
        self.host = host
        self.port = port
        self.timeout_seconds = timeout_seconds

    @staticmethod
    def _safe_int(value: Any, default: int = 0) -> int:
        if value is None:
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    @classmethod
    def parse_status_response(cls, payload: bytes) -> LiveStatus:
        """
        Parse a statusResponse datagram.

        Layout: marker line, one info blob line, then zero or more
        `<score> <ping> "<name>"` lines. Garbled player lines are skipped;
        a missing marker means the answer is unusable.
        """
        text = payload.lstrip(b"\xff").decode("utf-8", errors="replace")
        lines = text.split("\n")
        if not lines or not lines[0].strip().startswith(cls.RESPONSE_MARKER):
            raise ProviderUnavailable("Response is not a statusResponse")

        info = parse_info_string(lines[1].strip()) if len(lines) > 1 else {}
        players = []
        for line in lines[2:]:
            if not line.strip():
                continue
            m = PLAYER_LINE.match(line)
            if not m:
                logger.debug("Skipping garbled status line %r", line)
                continue
            players.append(StatusPlayer(
                name=m.group(3),
                score=cls._safe_int(m.group(1)),
                ping=cls._safe_int(m.group(2)),
            ))
        return LiveStatus(info=info, players=players)

    def get_status(self, timeout_seconds: Optional[float] = None) -> LiveStatus:
        """One request, one answer; raises ProviderTimeout if none arrives in time."""
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.settimeout(timeout)
            sock.sendto(self.PREFIX + self.COMMAND, (self.host, self.port))
            payload, _ = sock.recvfrom(self.MAX_PACKET)
        except socket.timeout as exc:
            raise ProviderTimeout(f"No status from {self.host}:{self.port} within {timeout}s") from exc
        except OSError as exc:
            raise ProviderUnavailable(f"Status query to {self.host}:{self.port} failed: {exc}") from exc
        finally:
            sock.close()
        return self.parse_status_response(payload)
