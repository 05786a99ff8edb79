"""PostgreSQL implementation of JobRepository and the backend factory.

Every status transition is a single call to the stored procedure
``public.update_task_status_with_outbox(uuid, varchar, text)``, which
updates the task row and appends the outbox event in one transaction.
"""

import logging
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..errors import JobNotFoundError, RepositoryError
from .backends import JobRepository
from .models import Job, JobStatus, JobUpdate
from .sqlite_backend import SQLiteJobRepository

UPDATE_STATUS_SQL = text(
    "SELECT public.update_task_status_with_outbox("
    "CAST(:job_id AS uuid), CAST(:status AS varchar), CAST(:output AS text))"
)

GET_JOB_SQL = text(
    "SELECT id, input_path, mimetype, format, status "
    "FROM conversion_tasks WHERE id = CAST(:job_id AS uuid)"
)


class PostgresJobRepository(JobRepository):
    """Job store backed by a pooled SQLAlchemy engine."""

    def __init__(self, engine: Engine, logger: Optional[logging.Logger] = None):
        self.engine = engine
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config, logger: Optional[logging.Logger] = None) -> "PostgresJobRepository":
        """Create an engine with a bounded pool from DatabaseConfig."""
        engine = create_engine(
            config.dsn,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_recycle=config.pool_recycle_s,
            pool_pre_ping=True,
            connect_args={"connect_timeout": config.connect_timeout_s},
        )
        return cls(engine, logger=logger)

    def update_status(
        self,
        job_id: str,
        status: JobStatus,
        output: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> None:
        # The procedure stores only the output location; file_name is derived from it
        update = JobUpdate(job_id=job_id, status=status, output=output, file_name=file_name)
        try:
            with self.engine.begin() as conn:
                conn.execute(UPDATE_STATUS_SQL, {
                    "job_id": update.job_id,
                    "status": update.status.value,
                    "output": update.output,
                })
        except SQLAlchemyError as e:
            raise RepositoryError(f"failed to update job status for ID {job_id}: {e}") from e

    def get_job(self, job_id: str) -> Job:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(GET_JOB_SQL, {"job_id": job_id}).mappings().first()
        except SQLAlchemyError as e:
            raise RepositoryError(f"failed to get job by ID {job_id}: {e}") from e

        if row is None:
            raise JobNotFoundError(job_id)

        return Job(
            job_id=str(row["id"]),
            input_path=row["input_path"],
            media_type=row["mimetype"],
            format=row["format"],
            status=JobStatus(row["status"]),
        )

    def ping(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise RepositoryError(f"ping failed: {e}") from e

    def close(self) -> None:
        self.engine.dispose()


def create_repository(config, logger: Optional[logging.Logger] = None) -> JobRepository:
    """Pick the repository backend from the database URL scheme.

    ``sqlite:///path/to/file.db`` selects the embedded backend; anything
    else is handed to SQLAlchemy as a PostgreSQL DSN.
    """
    dsn = config.dsn
    if dsn.startswith("sqlite:///"):
        path = dsn[len("sqlite:///"):] or ":memory:"
        return SQLiteJobRepository(path, logger=logger)
    if dsn.startswith("sqlite"):
        raise ValueError(f"Unsupported SQLite URL: {dsn}")
    return PostgresJobRepository.from_config(config, logger=logger)
