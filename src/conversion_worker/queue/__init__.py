"""Job queue, job repository and worker pool."""

from .backends import JobRepository, QueueClient
from .models import ConversionOutcome, Job, JobStatus, JobUpdate, QueueClass, WorkerInfo
from .redis_queue import RedisQueue
from .repository import PostgresJobRepository, create_repository
from .sqlite_backend import SQLiteJobRepository
from .worker import BackoffPolicy, Worker, WorkerPool, output_file_name

__all__ = [
    "BackoffPolicy",
    "ConversionOutcome",
    "Job",
    "JobRepository",
    "JobStatus",
    "JobUpdate",
    "PostgresJobRepository",
    "QueueClass",
    "QueueClient",
    "RedisQueue",
    "SQLiteJobRepository",
    "Worker",
    "WorkerInfo",
    "WorkerPool",
    "create_repository",
    "output_file_name",
]
