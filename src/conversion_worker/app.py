"""Application shell: wires dependencies, checks them, runs the pool until signalled.

Startup is fail-fast: if Redis or the job store cannot be reached within
``app.startup_timeout_s`` no worker is started and StartupError is raised.
"""

import logging
import signal
import threading
from typing import Callable, List, Optional

from .converters import ConverterRegistry
from .errors import StartupError
from .ffmpeg_runner import FfmpegRunner
from .models import WorkerServiceConfig
from .queue import JobRepository, QueueClient, RedisQueue, WorkerPool, create_repository


def check_dependency(component: str, ping: Callable[[], None], timeout: float) -> None:
    """Run a liveness check in a daemon thread, bounded by ``timeout`` seconds.

    A ping that never returns is abandoned; the daemon thread does not hold
    up interpreter exit.

    Raises:
        StartupError: ping raised or did not return in time
    """
    errors: List[Exception] = []

    def target() -> None:
        try:
            ping()
        except Exception as e:
            errors.append(e)

    thread = threading.Thread(target=target, name=f"check-{component}", daemon=True)
    thread.start()
    thread.join(timeout)

    if thread.is_alive():
        raise StartupError(component, f"no answer within {timeout}s")
    if errors:
        raise StartupError(component, str(errors[0])) from errors[0]


class WorkerApp:
    """Owns the queue client, the repository and the worker pool for one process."""

    def __init__(
        self,
        config: WorkerServiceConfig,
        queue: Optional[QueueClient] = None,
        repository: Optional[JobRepository] = None,
        registry: Optional[ConverterRegistry] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.queue = queue
        self.repository = repository
        self.registry = registry
        self.pool: Optional[WorkerPool] = None
        self.shutdown_event = threading.Event()

    def initialize(self) -> None:
        """Open connections, verify them and build the pool.

        Raises:
            StartupError: a dependency is unreachable or too slow to answer
        """
        if self.queue is None:
            self.queue = RedisQueue.from_config(self.config.redis, logger=self.logger)
        self._check("redis", self.queue.ping)
        self.logger.info("Connected to Redis")

        if self.repository is None:
            try:
                self.repository = create_repository(self.config.database, logger=self.logger)
            except Exception as e:
                raise StartupError("database", str(e)) from e
        self._check("database", self.repository.ping)
        self.logger.info("Connected to job store")

        if self.registry is None:
            runner = FfmpegRunner(
                ffmpeg_path=self.config.conversion.ffmpeg_path,
                timeout_s=self.config.conversion.timeout_s,
                loglevel=self.config.conversion.loglevel,
                logger=self.logger,
            )
            self.registry = ConverterRegistry(runner, logger=self.logger)

        self.pool = WorkerPool.from_config(
            self.config, self.queue, self.repository, self.registry, logger=self.logger
        )

    def _check(self, component: str, ping: Callable[[], None]) -> None:
        check_dependency(component, ping, self.config.app.startup_timeout_s)

    def install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in (signal.SIGINT, signal.SIGTERM):
            signal.signal(signum, self._on_signal)

    def _on_signal(self, signum, frame) -> None:
        self.logger.info("Shutdown signal received (%s)", signal.Signals(signum).name)
        self.shutdown_event.set()

    def request_shutdown(self) -> None:
        self.shutdown_event.set()

    def run(self) -> None:
        """Start the pool and block until a shutdown is requested."""
        if self.pool is None:
            self.initialize()

        self.install_signal_handlers()
        self.pool.start()
        self.logger.info("Worker pool started with %d workers", len(self.pool.workers))

        try:
            self.shutdown_event.wait()
        finally:
            self.cleanup()

    def cleanup(self) -> None:
        """Stop the pool (in-flight jobs finish) and close both connections."""
        self.logger.info("Cleaning up resources...")

        if self.pool is not None:
            self.pool.stop()
            for info in self.pool.worker_info():
                self.logger.info(
                    "Worker %d [%s]: %d completed, %d failed",
                    info.worker_id, info.queue_class.value, info.jobs_completed, info.jobs_failed,
                )

        if self.repository is not None:
            try:
                self.repository.close()
            except Exception as e:
                self.logger.error("Error closing job store: %s", e)

        if self.queue is not None:
            try:
                self.queue.close()
            except Exception as e:
                self.logger.error("Error closing Redis: %s", e)

        self.logger.info("Cleanup completed")
