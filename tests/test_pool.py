"""Tests for the worker pool: sizing, thread lifecycle and graceful shutdown."""

import threading
import time
from unittest.mock import MagicMock

import pytest

from conversion_worker.converters import ConverterRegistry
from conversion_worker.ffmpeg_runner import FfmpegResult
from conversion_worker.models import WorkerServiceConfig
from conversion_worker.queue import BackoffPolicy, JobStatus, QueueClass, WorkerPool


def wait_until(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def make_pool(queue, repository, fake_runner, tmp_path):
    pools = []

    def _make(**kwargs):
        kwargs.setdefault("registry", ConverterRegistry(fake_runner))
        kwargs.setdefault("output_dir", str(tmp_path / "output"))
        kwargs.setdefault("backoff", BackoffPolicy(idle_delay_s=0.01, error_delay_s=0.01))
        pool = WorkerPool(queue, repository, **kwargs)
        pools.append(pool)
        return pool

    yield _make

    for pool in pools:
        pool.stop(timeout=5)


class TestPoolSizing:
    def test_default_counts_and_ids(self, make_pool):
        pool = make_pool()
        assert [(w.worker_id, w.queue_class) for w in pool.workers] == [
            (1, QueueClass.LIGHT), (2, QueueClass.LIGHT), (3, QueueClass.HEAVY),
        ]

    def test_custom_counts(self, make_pool):
        pool = make_pool(light_workers=3, heavy_workers=2)
        classes = [w.queue_class for w in pool.workers]
        assert classes.count(QueueClass.LIGHT) == 3
        assert classes.count(QueueClass.HEAVY) == 2
        assert [w.worker_id for w in pool.workers] == [1, 2, 3, 4, 5]

    def test_worker_type_restricts_to_one_class(self, make_pool):
        pool = make_pool(light_workers=2, heavy_workers=4, worker_type="heavy")
        assert [w.queue_class for w in pool.workers] == [QueueClass.HEAVY] * 4
        assert [w.worker_id for w in pool.workers] == [1, 2, 3, 4]

    def test_zero_workers(self, make_pool):
        pool = make_pool(light_workers=0, heavy_workers=0)
        pool.start()
        assert not pool.is_running
        pool.stop()

    def test_from_config(self, queue, repository, fake_runner):
        config = WorkerServiceConfig.from_dict({
            "worker": {"light_workers": 1, "heavy_workers": 2, "output_dir": "/data/out"},
            "backoff": {"idle_delay_s": 0.2},
        })
        pool = WorkerPool.from_config(config, queue, repository, ConverterRegistry(fake_runner))

        assert len(pool.workers) == 3
        assert str(pool.workers[0].output_dir) == "/data/out"
        assert pool.workers[0].backoff.idle_delay_s == 0.2


class TestPoolLifecycle:
    def test_start_and_stop(self, make_pool):
        pool = make_pool(light_workers=2, heavy_workers=1)
        pool.start()
        assert pool.is_running

        names = sorted(t.name for t in threading.enumerate() if t.name.startswith("worker-"))
        assert names == ["worker-1-light", "worker-2-light", "worker-3-heavy"]

        pool.stop(timeout=5)
        assert not pool.is_running

    def test_double_start_rejected(self, make_pool):
        pool = make_pool()
        pool.start()
        with pytest.raises(RuntimeError):
            pool.start()

    def test_context_manager(self, make_pool):
        pool = make_pool(light_workers=1, heavy_workers=0)
        with pool:
            assert pool.is_running
        assert not pool.is_running

    def test_jobs_routed_by_queue_class(self, make_pool, queue, repository, make_job):
        light_job = make_job(job_id="light-1", media_type="image/png", format="jpg")
        heavy_job = make_job(job_id="heavy-1", media_type="video/mp4", format="gif")
        for queue_class, job in ((QueueClass.LIGHT, light_job), (QueueClass.HEAVY, heavy_job)):
            repository.create_job(job)
            queue.push_job(queue_class, job)

        pool = make_pool(light_workers=1, heavy_workers=1)
        with pool:
            assert wait_until(lambda: all(
                repository.get_job(j).status == JobStatus.COMPLETED for j in ("light-1", "heavy-1")
            ))

        info = {i.queue_class: i for i in pool.worker_info()}
        assert info[QueueClass.LIGHT].last_job_id == "light-1"
        assert info[QueueClass.HEAVY].last_job_id == "heavy-1"

    def test_each_job_processed_once(self, make_pool, queue, repository, make_job):
        job_ids = [f"job-{i}" for i in range(20)]
        for job_id in job_ids:
            job = make_job(job_id=job_id, media_type="audio/wav", format="mp3")
            repository.create_job(job)
            queue.push_job(QueueClass.LIGHT, job)

        pool = make_pool(light_workers=4, heavy_workers=0)
        with pool:
            assert wait_until(lambda: sum(i.jobs_completed for i in pool.worker_info()) == 20)

        for job_id in job_ids:
            events = repository.get_events(job_id)
            assert [e["event_type"] for e in events] == ["task.processing", "task.completed"]
        assert sum(i.jobs_failed for i in pool.worker_info()) == 0


class TestGracefulShutdown:
    def test_stop_waits_for_in_flight_job(self, queue, repository, tmp_path, make_job):
        """A job mid-conversion when shutdown starts still reaches 'completed'."""
        started = threading.Event()
        release = threading.Event()

        runner = MagicMock()

        def slow_step(step, args, cancel_event=None):
            started.set()
            release.wait(5)
            return FfmpegResult(success=True, returncode=0, stdout="", stderr="", duration_s=0.0)

        runner.run_step.side_effect = slow_step

        job = make_job(job_id="slow")
        repository.create_job(job)
        queue.push_job(QueueClass.HEAVY, job)

        pool = WorkerPool(
            queue, repository, ConverterRegistry(runner),
            light_workers=0, heavy_workers=1,
            output_dir=str(tmp_path / "output"),
            backoff=BackoffPolicy(idle_delay_s=0.01),
        )
        pool.start()
        assert started.wait(5)

        stopper = threading.Thread(target=pool.stop)
        stopper.start()
        stopper.join(0.2)
        assert stopper.is_alive()
        assert repository.get_job("slow").status == JobStatus.PROCESSING

        release.set()
        stopper.join(5)
        assert not stopper.is_alive()

        assert repository.get_job("slow").status == JobStatus.COMPLETED
        assert pool.worker_info()[0].jobs_completed == 1
        assert not pool.is_running

    def test_no_new_jobs_after_stop(self, make_pool, queue, repository, make_job):
        pool = make_pool(light_workers=2, heavy_workers=0)
        pool.start()
        pool.stop(timeout=5)

        job = make_job(job_id="late", media_type="image/png", format="png")
        repository.create_job(job)
        queue.push_job(QueueClass.LIGHT, job)
        time.sleep(0.1)

        assert repository.get_job("late").status == JobStatus.PENDING
        assert queue.queue_length(QueueClass.LIGHT) == 1
