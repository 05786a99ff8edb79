"""Worker loop and worker pool.

This module provides concurrent job processing with:
- One polling thread per worker, bound to a single queue class
- A shared stop event checked once per loop iteration
- Separate pacing for empty polls and poll errors (BackoffPolicy)
- Job-scoped failure handling (a failed job never stops its worker)
- Graceful shutdown: in-flight conversions finish before stop() returns
"""

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ..converters import ConverterRegistry
from ..errors import InvalidJobIdError, JobDecodeError, QueueError, WorkerError
from .backends import JobRepository, QueueClient
from .models import ConversionOutcome, Job, JobStatus, QueueClass, WorkerInfo

ARCHIVE_FORMAT = "images"
DEFAULT_OUTPUT_DIR = "/tmp/output"


def output_file_name(job: Job) -> str:
    """``<id>.zip`` for frame archives, ``<id>.<format>`` otherwise.

    Raises:
        InvalidJobIdError: the id would escape the output directory
    """
    job_id = job.job_id
    if job_id in (".", "..") or Path(job_id).name != job_id or "\\" in job_id:
        raise InvalidJobIdError(job_id)
    if job.format == ARCHIVE_FORMAT:
        return f"{job.job_id}.zip"
    return f"{job.job_id}.{job.format}"


@dataclass(frozen=True)
class BackoffPolicy:
    """Delays between polls.

    An empty queue waits a short fixed delay. Consecutive poll errors wait
    ``error_delay_s * multiplier ** (n - 1)``, capped at ``error_max_delay_s``.
    """

    idle_delay_s: float = 0.5
    error_delay_s: float = 1.0
    error_max_delay_s: float = 30.0
    multiplier: float = 2.0

    @classmethod
    def immediate(cls) -> "BackoffPolicy":
        return cls(idle_delay_s=0.0, error_delay_s=0.0, error_max_delay_s=0.0)

    @classmethod
    def from_config(cls, config) -> "BackoffPolicy":
        return cls(
            idle_delay_s=config.idle_delay_s,
            error_delay_s=config.error_delay_s,
            error_max_delay_s=config.error_max_delay_s,
            multiplier=config.multiplier,
        )

    def error_delay(self, consecutive_errors: int) -> float:
        exponent = max(consecutive_errors - 1, 0)
        return min(self.error_delay_s * (self.multiplier ** exponent), self.error_max_delay_s)


class Worker:
    """One polling loop bound to one queue class."""

    def __init__(
        self,
        worker_id: int,
        queue_class: QueueClass,
        queue: QueueClient,
        repository: JobRepository,
        registry: ConverterRegistry,
        output_dir: str = DEFAULT_OUTPUT_DIR,
        backoff: Optional[BackoffPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.queue_class = QueueClass(queue_class)
        self.queue = queue
        self.repository = repository
        self.registry = registry
        self.output_dir = Path(output_dir)
        self.backoff = backoff or BackoffPolicy()
        self.logger = logger or logging.getLogger(__name__)

        self._info = WorkerInfo(worker_id=worker_id, queue_class=self.queue_class)
        self._info_lock = threading.Lock()

    @property
    def worker_id(self) -> int:
        return self._info.worker_id

    @property
    def info(self) -> WorkerInfo:
        """Snapshot of identity and counters."""
        with self._info_lock:
            return self._info.model_copy()

    def run(self, stop_event: threading.Event) -> None:
        """Poll and process jobs until ``stop_event`` is set.

        Returns normally on cancellation. A job that is mid-conversion when
        the event is set runs to completion first.
        """
        name = self.queue_class.value
        self.logger.info("Worker %d [%s] starting...", self.worker_id, name)
        consecutive_errors = 0

        while not stop_event.is_set():
            try:
                job = self.queue.pop_job(self.queue_class)
            except JobDecodeError as e:
                consecutive_errors = 0
                self._handle_decode_error(e)
                continue
            except QueueError as e:
                consecutive_errors += 1
                delay = self.backoff.error_delay(consecutive_errors)
                self.logger.error(
                    "Worker %d - Error popping job (attempt %d, retry in %.1fs): %s",
                    self.worker_id, consecutive_errors, delay, e,
                )
                stop_event.wait(delay)
                continue

            consecutive_errors = 0

            if job is None:
                self.logger.debug("Worker %d [%s] - No jobs available, waiting...", self.worker_id, name)
                stop_event.wait(self.backoff.idle_delay_s)
                continue

            self.process_job(job)

        self.logger.info("Worker %d [%s] stopping...", self.worker_id, name)

    def process_job(self, job: Job) -> ConversionOutcome:
        """Run one job through processing → completed|failed.

        Status-update failures are logged and never raised; conversion
        failures become a "failed" status and a failed outcome.
        """
        name = self.queue_class.value
        self.logger.info("Worker %d [%s] - Processing job %s", self.worker_id, name, job.job_id)
        with self._info_lock:
            self._info.last_job_id = job.job_id

        start_time = time.time()
        try:
            job.transition(JobStatus.PROCESSING)
            self._persist(job.job_id, JobStatus.PROCESSING)

            file_name = output_file_name(job)
            output_path = str(self.output_dir / file_name)

            converter = self.registry.resolve(job.media_type)
            self.output_dir.mkdir(parents=True, exist_ok=True)
            converter.convert(job.input_path, job.format, output_path)
        except Exception as e:
            duration = time.time() - start_time
            self._log_failure(job, e, duration)

            if job.status.can_transition_to(JobStatus.FAILED):
                job.transition(JobStatus.FAILED)
            else:
                job.status = JobStatus.FAILED
            self._persist(job.job_id, JobStatus.FAILED)
            with self._info_lock:
                self._info.jobs_failed += 1

            return ConversionOutcome(
                job_id=job.job_id,
                status=JobStatus.FAILED,
                error_message=str(e),
                duration_s=duration,
            )

        duration = time.time() - start_time
        self.logger.info(
            "Worker %d [%s] - Job %s completed in %.2fs -> %s",
            self.worker_id, name, job.job_id, duration, output_path,
        )

        job.transition(JobStatus.COMPLETED)
        job.output_path = output_path
        job.file_name = file_name
        self._persist(job.job_id, JobStatus.COMPLETED, output_path, file_name)
        with self._info_lock:
            self._info.jobs_completed += 1

        return ConversionOutcome(
            job_id=job.job_id,
            status=JobStatus.COMPLETED,
            output_path=output_path,
            file_name=file_name,
            duration_s=duration,
        )

    def _persist(
        self,
        job_id: str,
        status: JobStatus,
        output: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> bool:
        try:
            self.repository.update_status(job_id, status, output, file_name)
            return True
        except Exception as e:
            level = logging.WARNING if status == JobStatus.PROCESSING else logging.ERROR
            self.logger.log(
                level,
                "Worker %d - Error updating job %s status to %s: %s",
                self.worker_id, job_id, status.value, e,
            )
            return False

    def _log_failure(self, job: Job, error: Exception, duration: float) -> None:
        if isinstance(error, WorkerError):
            self.logger.error(
                "Worker %d [%s] - Job %s failed after %.2fs: %s",
                self.worker_id, self.queue_class.value, job.job_id, duration, error,
            )
            stderr = getattr(error, "stderr", "")
            if stderr:
                self.logger.error("Worker %d - ffmpeg output for job %s:\n%s", self.worker_id, job.job_id, stderr)
        else:
            self.logger.exception(
                "Worker %d [%s] - Job %s failed after %.2fs with unexpected error",
                self.worker_id, self.queue_class.value, job.job_id, duration,
            )

    def _handle_decode_error(self, error: JobDecodeError) -> None:
        """Record an undecodable payload; the identifier cannot be re-polled."""
        with self._info_lock:
            self._info.jobs_failed += 1

        if not error.job_id:
            self.logger.error("Worker %d - Orphaned queue entry %s: %s", self.worker_id, error.queue_id, error)
            return

        self.logger.error("Worker %d - Job %s failed to decode: %s", self.worker_id, error.job_id, error)
        # Walk the state machine rather than jumping pending -> failed
        if self._persist(error.job_id, JobStatus.PROCESSING):
            self._persist(error.job_id, JobStatus.FAILED)


class WorkerPool:
    """Fixed set of light and heavy workers, each on its own thread.

    Features:
    - Sequential worker ids (light workers first)
    - Optional restriction to one queue class via ``worker_type``
    - Context manager for graceful shutdown
    - Read-only WorkerInfo snapshots for monitoring
    """

    def __init__(
        self,
        queue: QueueClient,
        repository: JobRepository,
        registry: ConverterRegistry,
        light_workers: int = 2,
        heavy_workers: int = 1,
        worker_type: Optional[str] = None,
        output_dir: str = DEFAULT_OUTPUT_DIR,
        backoff: Optional[BackoffPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize worker pool.

        Args:
            queue: Shared queue client
            repository: Shared job repository
            registry: Shared converter registry
            light_workers: Number of workers polling the light queue
            heavy_workers: Number of workers polling the heavy queue
            worker_type: "light" or "heavy" to start only that class
            output_dir: Directory for converted files
            backoff: Poll pacing (default: BackoffPolicy())
            logger: Logger for the pool and its workers
        """
        self.logger = logger or logging.getLogger(__name__)
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

        counts = {QueueClass.LIGHT: light_workers, QueueClass.HEAVY: heavy_workers}
        if worker_type:
            only = QueueClass(worker_type)
            counts = {only: counts[only]}

        self.logger.info(
            "Creating %s",
            " and ".join(f"{count} {cls.value.upper()} workers" for cls, count in counts.items()),
        )

        self.workers: List[Worker] = []
        for queue_class, count in counts.items():
            for _ in range(count):
                self.workers.append(Worker(
                    worker_id=len(self.workers) + 1,
                    queue_class=queue_class,
                    queue=queue,
                    repository=repository,
                    registry=registry,
                    output_dir=output_dir,
                    backoff=backoff,
                    logger=self.logger,
                ))

    @classmethod
    def from_config(cls, config, queue, repository, registry, logger=None) -> "WorkerPool":
        """Build a pool from WorkerServiceConfig."""
        return cls(
            queue=queue,
            repository=repository,
            registry=registry,
            light_workers=config.worker.light_workers,
            heavy_workers=config.worker.heavy_workers,
            worker_type=config.worker.worker_type,
            output_dir=config.worker.output_dir,
            backoff=BackoffPolicy.from_config(config.backoff),
            logger=logger,
        )

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *args):
        self.stop()

    @property
    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        """Launch one thread per worker sharing a single stop event."""
        if self._threads:
            raise RuntimeError("Worker pool already started")

        self._stop_event.clear()
        for worker in self.workers:
            thread = threading.Thread(
                target=self._run_worker,
                args=(worker,),
                name=f"worker-{worker.worker_id}-{worker.queue_class.value}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()

    def _run_worker(self, worker: Worker) -> None:
        try:
            worker.run(self._stop_event)
        except Exception:
            self.logger.exception("Worker %d stopped with error", worker.worker_id)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal every worker and wait for their current iteration to finish.

        Args:
            timeout: Per-thread join timeout (None = wait for in-flight jobs)
        """
        self.logger.info("Stopping worker pool...")
        self._stop_event.set()

        for thread in self._threads:
            thread.join(timeout)
            if thread.is_alive():
                self.logger.warning("Worker thread %s still running after %ss", thread.name, timeout)

        self._threads = [thread for thread in self._threads if thread.is_alive()]
        self.logger.info("Worker pool stopped successfully")

    def worker_info(self) -> List[WorkerInfo]:
        return [worker.info for worker in self.workers]
