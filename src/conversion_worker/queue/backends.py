from __future__ import annotations

"""Abstract base classes for the queue client and the job repository.

These abstractions keep the worker loop independent of the concrete
transport (Redis lists) and store (PostgreSQL stored procedure or the
embedded SQLite backend used for local runs and tests).
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import Job, JobStatus, QueueClass


class QueueClient(ABC):
    """Abstract queue interface consumed by workers.

    Implementations must provide:
    - Atomic, destructive pop (an identifier is delivered to one worker only)
    - Non-blocking behaviour (empty queue returns None immediately)
    - A liveness check used at startup
    """

    @abstractmethod
    def pop_job(self, queue_class: "QueueClass") -> Optional["Job"]:
        """Remove the head identifier of the class's wait list and load its job.

        Args:
            queue_class: Which wait list to pop from

        Returns:
            Job if an identifier was available, None if the list is empty

        Raises:
            QueueError: transport failure (transient)
            JobDecodeError: identifier popped but payload missing or invalid
        """
        pass

    @abstractmethod
    def ping(self) -> None:
        """Raise if the queue is unreachable."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release pooled connections."""
        pass


class JobRepository(ABC):
    """Abstract status sink for job lifecycle transitions.

    Implementations must provide:
    - One atomic operation per transition that updates the job row and
      appends an outbox event together
    - Idempotence: repeating an identical call leaves state unchanged
    - A single error or success per call (no partial transactions)
    """

    @abstractmethod
    def update_status(
        self,
        job_id: str,
        status: "JobStatus",
        output: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> None:
        """Persist a status transition.

        Args:
            job_id: Job identifier
            status: Target status
            output: Output location, only when status is completed
            file_name: Output file name, only when status is completed

        Raises:
            RepositoryError: the store rejected or could not apply the update
        """
        pass

    @abstractmethod
    def get_job(self, job_id: str) -> "Job":
        """Load a job by id.

        Raises:
            JobNotFoundError: no such job
        """
        pass

    @abstractmethod
    def ping(self) -> None:
        """Raise if the store is unreachable."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release pooled connections."""
        pass
