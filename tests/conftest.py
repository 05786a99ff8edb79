import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from conversion_worker.ffmpeg_runner import FfmpegResult, FfmpegRunner
from conversion_worker.queue import Job, RedisQueue, SQLiteJobRepository


class FakeRedis:
    """Thread-safe in-memory stand-in for the handful of Redis calls the queue uses."""

    def __init__(self):
        self._lock = threading.Lock()
        self.lists = {}
        self.hashes = {}
        self.closed = False

    def lpop(self, key):
        with self._lock:
            items = self.lists.get(key)
            if not items:
                return None
            return items.pop(0)

    def rpush(self, key, *values):
        with self._lock:
            self.lists.setdefault(key, []).extend(values)
            return len(self.lists[key])

    def llen(self, key):
        with self._lock:
            return len(self.lists.get(key, []))

    def hget(self, key, field):
        with self._lock:
            return self.hashes.get(key, {}).get(field)

    def hset(self, key, field, value):
        with self._lock:
            self.hashes.setdefault(key, {})[field] = value
            return 1

    def ping(self):
        return True

    def close(self):
        self.closed = True


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def queue(fake_redis):
    """RedisQueue over an in-memory fake."""
    return RedisQueue(fake_redis)


@pytest.fixture
def repository(tmp_path):
    """SQLiteJobRepository on a temporary database."""
    repo = SQLiteJobRepository(str(tmp_path / "jobs.db"))
    yield repo
    repo.close()


@pytest.fixture
def make_job():
    """Factory for Job instances with sensible defaults."""
    def _make(job_id="j1", input_path="/in/a.mov", media_type="video/mp4", format="mp4"):
        return Job(job_id=job_id, input_path=input_path, media_type=media_type, format=format)
    return _make


@pytest.fixture
def fake_runner():
    """FfmpegRunner whose run_step records calls and succeeds without spawning ffmpeg."""
    runner = MagicMock(spec=FfmpegRunner)
    runner.calls = []

    def run_step(step, args, cancel_event=None):
        runner.calls.append((step, list(args)))
        # Materialize the last argument so archive steps have something to pack
        if step == "extract":
            pattern = Path(args[-1])
            for i in range(1, 4):
                (pattern.parent / (pattern.name % i)).write_bytes(b"png")
        return FfmpegResult(success=True, returncode=0, stdout="", stderr="", duration_s=0.0)

    runner.run_step.side_effect = run_step
    return runner
