# tests/test_tailer.py

import io
import shutil

import pytest

from q3ladder import tailer as tailer_module
from q3ladder.events import Kill, MatchStart
from q3ladder.tailer import LogTailer

from tests.helpers import fixture_path


class FakePopen:
    """Replays canned stdout and exits with a fixed code."""

    instances = []
    script = []

    def __init__(self, cmd, stdin=None, stdout=None, stderr=None):
        self.cmd = cmd
        lines, self.code = FakePopen.script.pop(0) if FakePopen.script else ([], 1)
        self.stdout = io.BytesIO(b''.join(lines))
        FakePopen.instances.append(self)

    def wait(self):
        return self.code

    def poll(self):
        return self.code

    def terminate(self):
        pass


@pytest.fixture
def fake_popen(monkeypatch):
    FakePopen.instances = []
    FakePopen.script = []
    monkeypatch.setattr(tailer_module.subprocess, 'Popen', FakePopen)
    return FakePopen


@pytest.fixture
def log_copy(tmp_path):
    path = tmp_path / 'games.log'
    shutil.copy(fixture_path('games.log'), path)
    return path


class TestSeed:

    def test_seed_tags_events(self, log_copy):
        events = []
        t = LogTailer(log_copy, events.append)
        assert t.seed() == 12
        assert all(e.seed for e in events)
        assert isinstance(events[0], MatchStart)
        assert t.rejected_lines == 1
        assert t.seed_offset == log_copy.stat().st_size

    def test_seed_runs_once(self, log_copy):
        events = []
        t = LogTailer(log_copy, events.append)
        t.seed()
        assert t.seed() == 0
        assert len(events) == 12

    def test_partial_last_line_left_for_follower(self, tmp_path):
        path = tmp_path / 'games.log'
        full = b"  0:00 InitGame: \\mapname\\q3dm17\n"
        path.write_bytes(full + b"  0:05 Kill: 0 1 7: Foo killed Ba")
        events = []
        t = LogTailer(path, events.append)
        assert t.seed() == 1
        assert t.seed_offset == len(full)

    def test_missing_file_is_empty_state(self, tmp_path):
        events = []
        t = LogTailer(tmp_path / 'nope.log', events.append)
        assert t.seed() == 0
        assert t.seeded
        assert t.seed_offset == 0
        assert events == []

    def test_handler_errors_do_not_stop_seed(self, log_copy):
        seen = []

        def flaky(event):
            seen.append(event)
            if isinstance(event, Kill):
                raise RuntimeError("boom")

        t = LogTailer(log_copy, flaky)
        assert t.seed() == 12
        assert len(seen) == 12


class TestFollower:

    def test_first_spawn_resumes_after_seed(self, log_copy):
        t = LogTailer(log_copy, lambda e: None)
        t.seed()
        size = log_copy.stat().st_size
        assert t.follower_command(first=True) == ['tail', '-c', f'+{size + 1}', '-F', str(log_copy)]

    def test_respawn_is_live_only(self, log_copy):
        t = LogTailer(log_copy, lambda e: None)
        t.seed()
        assert t.follower_command(first=False) == ['tail', '-n', '0', '-F', str(log_copy)]

    def test_missing_file_follows_from_start(self, tmp_path):
        t = LogTailer(tmp_path / 'games.log', lambda e: None)
        t.seed()
        assert t.follower_command(first=True)[:3] == ['tail', '-c', '+1']

    def test_follower_lines_are_live(self, tmp_path, fake_popen):
        fake_popen.script = [([b"InitGame: \\mapname\\q3dm6\n", b"Kill: 0 1 7: A killed B by MOD_ROCKET\n"], 0)]
        events = []
        t = LogTailer(tmp_path / 'games.log', events.append)
        t.seed()
        assert t.run_follower_once(first=True) == 0
        assert t.drain() == 2
        assert [type(e) for e in events] == [MatchStart, Kill]
        assert not any(e.seed for e in events)
        assert t.spawn_count == 1

    def test_respawn_after_exit(self, tmp_path, fake_popen, monkeypatch):
        fake_popen.script = [
            ([b"InitGame: \\mapname\\q3dm17\n"], 1),
            ([b"ShutdownGame:\n"], 1),
        ]
        t = LogTailer(tmp_path / 'games.log', lambda e: None, backoff_seconds=0)
        t.seed()

        waits = []

        def fake_wait(seconds):
            waits.append(seconds)
            return len(waits) >= 2

        monkeypatch.setattr(t._stop, 'wait', fake_wait)
        monkeypatch.setattr(t._stop, 'is_set', lambda: len(waits) >= 2)
        t._follow_loop()

        assert t.spawn_count == 2
        assert fake_popen.instances[0].cmd[1] == '-c'
        assert fake_popen.instances[1].cmd[1:3] == ['-n', '0']
        assert t._lines.qsize() == 2

    def test_missing_binary_retries(self, tmp_path, monkeypatch):
        attempts = []

        def broken_popen(cmd, **kwargs):
            attempts.append(cmd)
            raise FileNotFoundError(cmd[0])

        monkeypatch.setattr(tailer_module.subprocess, 'Popen', broken_popen)
        t = LogTailer(tmp_path / 'games.log', lambda e: None, backoff_seconds=0)
        t.seed()
        monkeypatch.setattr(t._stop, 'wait', lambda s: None)
        monkeypatch.setattr(t._stop, 'is_set', lambda: len(attempts) >= 3)
        t._follow_loop()
        assert len(attempts) == 3

    def test_live_events_follow_seed_events(self, log_copy, fake_popen):
        fake_popen.script = [([b"  9:00 ShutdownGame:\n"], 0)]
        events = []
        t = LogTailer(log_copy, events.append)
        t.seed()
        t.run_follower_once(first=True)
        t.drain()
        assert [e.seed for e in events] == [True] * 12 + [False]
