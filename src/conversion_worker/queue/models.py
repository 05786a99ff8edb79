"""Pydantic models for the job queue vocabulary.

This module defines the type-safe models shared by the queue client, the
job repository, the workers and the pool. Payloads read from Redis are
validated through these models before any conversion is attempted.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..errors import InvalidStateTransitionError


class JobStatus(str, Enum):
    """Job processing states with explicit semantics.

    State transitions:
        pending → processing   (worker pops the job)
        processing → completed (conversion produced an output artifact)
        processing → failed    (dispatch or conversion error)

    Terminal states never move again. The producer creates jobs as pending.
    """

    PENDING = "pending"  # Enqueued by the producer
    PROCESSING = "processing"  # Claimed by a worker
    COMPLETED = "completed"  # Output written
    FAILED = "failed"  # Dispatch or conversion error

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    def can_transition_to(self, target: "JobStatus") -> bool:
        """Return True if moving from this status to ``target`` is legal."""
        return target in _TRANSITIONS[self]


_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class QueueClass(str, Enum):
    """Static partition deciding which wait list a worker polls."""

    LIGHT = "light"
    HEAVY = "heavy"


class Job(BaseModel):
    """In-memory copy of one conversion job.

    Field aliases match the JSON payload written by the producer
    (``{"id", "input_path", "mimetype", "format"}``).
    """

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="id", min_length=1, description="Producer-assigned identifier")
    input_path: str = Field(..., description="Path or URI of the source file")
    media_type: str = Field(..., alias="mimetype", description="Declared <kind>/<subtype>")
    format: str = Field(..., min_length=1, description="Target format token")
    status: JobStatus = Field(default=JobStatus.PENDING, description="Current job state")
    output_path: Optional[str] = Field(default=None, description="Output location once completed")
    file_name: Optional[str] = Field(default=None, description="Output file name once completed")

    def transition(self, target: JobStatus) -> None:
        """Move the local copy to ``target``, enforcing the state machine."""
        if not self.status.can_transition_to(target):
            raise InvalidStateTransitionError(self.job_id, self.status.value, target.value)
        self.status = target

    def to_payload(self) -> dict:
        """Serialize to the producer wire format."""
        return {
            "id": self.job_id,
            "input_path": self.input_path,
            "mimetype": self.media_type,
            "format": self.format,
        }


class JobUpdate(BaseModel):
    """A single status transition handed to the job repository."""

    job_id: str
    status: JobStatus
    output: Optional[str] = None
    file_name: Optional[str] = None

    @model_validator(mode="after")
    def output_only_when_completed(self) -> "JobUpdate":
        if self.status != JobStatus.COMPLETED and (self.output or self.file_name):
            raise ValueError(f"output may only be set for status 'completed', got '{self.status.value}'")
        return self


class WorkerInfo(BaseModel):
    """Identity and counters of one worker loop."""

    worker_id: int = Field(..., ge=1, description="Sequential id assigned by the pool")
    queue_class: QueueClass
    start_time: datetime = Field(default_factory=datetime.now)
    jobs_completed: int = Field(default=0, ge=0)
    jobs_failed: int = Field(default=0, ge=0)
    last_job_id: Optional[str] = None


class ConversionOutcome(BaseModel):
    """Result of dispatching one job to its converter."""

    job_id: str
    status: JobStatus
    output_path: Optional[str] = None
    file_name: Optional[str] = None
    error_message: Optional[str] = None
    duration_s: float = Field(default=0.0, ge=0.0)

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.COMPLETED
