"""
Worker error types.

All errors inherit from WorkerError for easy catching.
Job-scoped errors (dispatch, conversion) end up as a "failed" status;
transport errors (queue, repository) only affect loop pacing.
"""

from typing import Optional


class WorkerError(Exception):
    """Base exception for all conversion worker failures."""
    pass


class StartupError(WorkerError):
    """Raised when a dependency is unreachable before the pool starts."""

    def __init__(self, component: str, reason: str):
        self.component = component
        self.reason = reason
        super().__init__(f"Startup check failed for {component}: {reason}")


class QueueError(WorkerError):
    """Raised when the queue transport fails while polling."""

    def __init__(self, queue_name: str, reason: str):
        self.queue_name = queue_name
        self.reason = reason
        super().__init__(f"Queue '{queue_name}' error: {reason}")


class JobDecodeError(QueueError):
    """Raised when an identifier was popped but its payload is missing or malformed.

    The identifier has already left the wait list, so the job cannot be
    re-polled. ``job_id`` is set when the raw payload still names the job.
    """

    def __init__(self, queue_name: str, queue_id: str, reason: str, job_id: Optional[str] = None):
        self.queue_id = queue_id
        self.job_id = job_id
        super().__init__(queue_name, f"cannot decode job {queue_id}: {reason}")


class DispatchError(WorkerError):
    """Raised when no converter can handle a job."""
    pass


class UnsupportedMediaTypeError(DispatchError):
    """Raised when the media kind has no registered converter."""

    def __init__(self, media_type: str):
        self.media_type = media_type
        super().__init__(f"Unsupported media type: {media_type}")


class UnsupportedFormatError(DispatchError):
    """Raised when a converter has no invocation for the target format."""

    def __init__(self, kind: str, format: str):
        self.kind = kind
        self.format = format
        super().__init__(f"Unsupported {kind} format: {format}")


class InvalidJobIdError(DispatchError):
    """Raised when a job id cannot be used as an output file name."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job id is not a safe file name: {job_id!r}")


class ConversionError(WorkerError):
    """Raised when the external media tool fails."""

    def __init__(
        self,
        step: str,
        reason: str,
        returncode: Optional[int] = None,
        stderr: str = "",
        error_type: Optional[str] = None,
    ):
        self.step = step
        self.reason = reason
        self.returncode = returncode
        self.stderr = stderr
        self.error_type = error_type
        super().__init__(f"Conversion step '{step}' failed: {reason}")


class ConversionCancelledError(ConversionError):
    """Raised when an invocation is refused because cancellation was requested."""

    def __init__(self, step: str):
        super().__init__(step, "cancelled before start")


class RepositoryError(WorkerError):
    """Raised when the job store rejects or cannot apply an operation."""
    pass


class JobNotFoundError(RepositoryError):
    """Raised when a job id does not exist in the store."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class InvalidStateTransitionError(RepositoryError):
    """Raised when attempting an illegal status transition."""

    def __init__(self, job_id: str, current_state: str, target_state: str):
        self.job_id = job_id
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            f"Invalid job state transition for {job_id}: "
            f"{current_state} -> {target_state}"
        )
