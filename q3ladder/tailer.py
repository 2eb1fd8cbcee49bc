# q3ladder/tailer.py

"""
Follow games.log: one seed pass over what is already there, then an
indefinite live follow through an external `tail -F` process.

Lines are delivered strictly in file order and every seed event is
delivered before any live event. Reading and processing run on separate
threads joined by a FIFO queue, so a slow handler never stalls receipt
of the next line. If the follower exits (rotation, restart, kill) it is
respawned after a fixed backoff in live-only mode; the seed pass is
never repeated.
"""

import dataclasses
import logging
import queue
import subprocess
import threading
from pathlib import Path
from typing import Callable, List, Optional

from q3ladder.errors import FollowerExit
from q3ladder.parser import LogLineParser

logger = logging.getLogger(__name__)

EventHandler = Callable[[object], None]

_STOP = object()


class LogTailer:

    def __init__(self, log_path, on_event: EventHandler, parser: Optional[LogLineParser] = None,
                 backoff_seconds: float = 1.0, tail_binary: str = 'tail'):
        self.log_path = Path(log_path)
        self.on_event = on_event
        self.parser = parser or LogLineParser()
        self.backoff_seconds = backoff_seconds
        self.tail_binary = tail_binary

        self.seed_offset: Optional[int] = None
        self.seeded = False
        self.spawn_count = 0
        self.rejected_lines = 0

        self._lines: queue.Queue = queue.Queue()
        self._stop = threading.Event()
        self._proc: Optional[subprocess.Popen] = None
        self._proc_lock = threading.Lock()
        self._follow_thread: Optional[threading.Thread] = None
        self._dispatch_thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Seed pass
    # ------------------------------------------------------------------

    def seed(self) -> int:
        """
        Replay existing content once, tagging events seed=True.

        Only newline-terminated lines are consumed; a trailing partial
        line is left for the follower. Returns the number of events
        delivered. A missing file means an empty initial state.
        """
        if self.seeded:
            return 0
        self.seeded = True
        self.seed_offset = 0

        if not self.log_path.exists():
            logger.debug("Log %s does not exist yet; skipping seed pass", self.log_path)
            return 0

        delivered = 0
        offset = 0
        with self.log_path.open('rb') as handle:
            for raw in handle:
                if not raw.endswith(b'\n'):
                    break
                offset += len(raw)
                line = raw.decode('utf-8', errors='replace')
                if self._deliver(line, seed=True):
                    delivered += 1
        self.seed_offset = offset
        logger.info("Seeded %s events from %s (%s bytes)", delivered, self.log_path, offset)
        return delivered

    # ------------------------------------------------------------------
    # Live follow
    # ------------------------------------------------------------------

    def follower_command(self, first: bool) -> List[str]:
        """Resume exactly after the seed on the first spawn, live-only afterwards."""
        if first and self.seed_offset is not None:
            return [self.tail_binary, '-c', f'+{self.seed_offset + 1}', '-F', str(self.log_path)]
        return [self.tail_binary, '-n', '0', '-F', str(self.log_path)]

    def run_follower_once(self, first: bool = False) -> int:
        """Spawn the follower, queue its lines until it exits, return its exit code."""
        cmd = self.follower_command(first)
        self.spawn_count += 1
        logger.debug("Starting follower: %s", ' '.join(cmd))
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
        )
        with self._proc_lock:
            self._proc = proc
        try:
            for raw in proc.stdout:
                self._lines.put(raw.decode('utf-8', errors='replace'))
                if self._stop.is_set():
                    break
        finally:
            proc.stdout.close()
            returncode = proc.wait()
            with self._proc_lock:
                self._proc = None
        return returncode

    def _follow_loop(self) -> None:
        first = True
        while not self._stop.is_set():
            try:
                returncode = self.run_follower_once(first=first)
                if not self._stop.is_set():
                    raise FollowerExit(returncode)
            except FollowerExit as e:
                logger.warning("%s; respawning in %.1fs", e, self.backoff_seconds)
            except OSError as e:
                logger.error("Could not start log follower %r: %s; retrying in %.1fs",
                             self.tail_binary, e, self.backoff_seconds)
            first = False
            self._stop.wait(self.backoff_seconds)

    def _dispatch_loop(self) -> None:
        while True:
            line = self._lines.get()
            if line is _STOP:
                break
            self._deliver(line, seed=False)

    def drain(self) -> int:
        """Deliver whatever is queued right now on the calling thread."""
        delivered = 0
        while True:
            try:
                line = self._lines.get_nowait()
            except queue.Empty:
                return delivered
            if line is _STOP:
                return delivered
            if self._deliver(line, seed=False):
                delivered += 1

    def _reject(self, _error) -> None:
        self.rejected_lines += 1

    def _deliver(self, line: str, seed: bool) -> bool:
        event = self.parser.parse(line, on_reject=self._reject)
        if event is None:
            return False
        if seed:
            event = dataclasses.replace(event, seed=True)
        try:
            self.on_event(event)
        except Exception:
            logger.exception("Event handler failed for %s", type(event).__name__)
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, on_seed_complete: Optional[Callable[[], None]] = None) -> None:
        """Seed synchronously, then follow on background threads."""
        self.seed()
        if on_seed_complete is not None:
            try:
                on_seed_complete()
            except Exception:
                logger.exception("Seed completion hook failed")

        self._stop.clear()
        self._dispatch_thread = threading.Thread(target=self._dispatch_loop, name='log-dispatch', daemon=True)
        self._follow_thread = threading.Thread(target=self._follow_loop, name='log-follow', daemon=True)
        self._dispatch_thread.start()
        self._follow_thread.start()
        logger.info("Tailing %s", self.log_path)

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        with self._proc_lock:
            proc = self._proc
        if proc is not None and proc.poll() is None:
            proc.terminate()
        self._lines.put(_STOP)
        for thread in (self._follow_thread, self._dispatch_thread):
            if thread is not None:
                thread.join(timeout)
