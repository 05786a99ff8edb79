"""Tests for job models and configuration models."""

import pytest
from pydantic import ValidationError

from conversion_worker.errors import InvalidStateTransitionError
from conversion_worker.models import DatabaseConfig, WorkerServiceConfig
from conversion_worker.queue import ConversionOutcome, Job, JobStatus, JobUpdate, QueueClass, WorkerInfo


class TestJobStatus:
    """Test the job state machine."""

    def test_forward_transitions(self):
        assert JobStatus.PENDING.can_transition_to(JobStatus.PROCESSING)
        assert JobStatus.PROCESSING.can_transition_to(JobStatus.COMPLETED)
        assert JobStatus.PROCESSING.can_transition_to(JobStatus.FAILED)

    def test_no_skipping_processing(self):
        assert not JobStatus.PENDING.can_transition_to(JobStatus.COMPLETED)
        assert not JobStatus.PENDING.can_transition_to(JobStatus.FAILED)

    @pytest.mark.parametrize("terminal", [JobStatus.COMPLETED, JobStatus.FAILED])
    def test_terminal_states_never_move(self, terminal):
        assert terminal.is_terminal
        for target in JobStatus:
            assert not terminal.can_transition_to(target)

    def test_status_values_are_wire_strings(self):
        assert [s.value for s in JobStatus] == ["pending", "processing", "completed", "failed"]


class TestJob:
    """Test Job payload mapping and transitions."""

    def test_from_producer_payload(self):
        job = Job.model_validate({
            "id": "abc", "input_path": "/in/a.png", "mimetype": "image/png", "format": "jpg",
        })
        assert job.job_id == "abc"
        assert job.media_type == "image/png"
        assert job.status == JobStatus.PENDING

    def test_to_payload_uses_wire_names(self):
        job = Job(job_id="abc", input_path="/in/a.png", media_type="image/png", format="jpg")
        assert job.to_payload() == {
            "id": "abc", "input_path": "/in/a.png", "mimetype": "image/png", "format": "jpg",
        }

    def test_missing_field_rejected(self):
        with pytest.raises(ValidationError):
            Job.model_validate({"id": "abc", "input_path": "/in/a.png", "format": "jpg"})

    def test_empty_id_rejected(self):
        with pytest.raises(ValidationError):
            Job(job_id="", input_path="/in/a.png", media_type="image/png", format="jpg")

    def test_transition_follows_state_machine(self, make_job):
        job = make_job()
        job.transition(JobStatus.PROCESSING)
        job.transition(JobStatus.COMPLETED)
        assert job.status == JobStatus.COMPLETED

    def test_illegal_transition_raises(self, make_job):
        job = make_job()
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            job.transition(JobStatus.COMPLETED)
        assert exc_info.value.current_state == "pending"
        assert exc_info.value.target_state == "completed"
        assert job.status == JobStatus.PENDING


class TestJobUpdate:
    """Output is only meaningful for completed jobs."""

    def test_completed_with_output(self):
        update = JobUpdate(job_id="j1", status=JobStatus.COMPLETED, output="/tmp/output/j1.mp4")
        assert update.output == "/tmp/output/j1.mp4"

    def test_failed_with_output_rejected(self):
        with pytest.raises(ValidationError):
            JobUpdate(job_id="j1", status=JobStatus.FAILED, output="/tmp/output/j1.mp4")

    def test_processing_with_file_name_rejected(self):
        with pytest.raises(ValidationError):
            JobUpdate(job_id="j1", status=JobStatus.PROCESSING, file_name="j1.mp4")


class TestWorkerModels:
    def test_worker_info_defaults(self):
        info = WorkerInfo(worker_id=1, queue_class=QueueClass.LIGHT)
        assert info.jobs_completed == 0
        assert info.jobs_failed == 0
        assert info.last_job_id is None

    def test_worker_id_starts_at_one(self):
        with pytest.raises(ValidationError):
            WorkerInfo(worker_id=0, queue_class=QueueClass.HEAVY)

    def test_outcome_succeeded(self):
        assert ConversionOutcome(job_id="j1", status=JobStatus.COMPLETED).succeeded
        assert not ConversionOutcome(job_id="j1", status=JobStatus.FAILED).succeeded


class TestConfigModels:
    """Test configuration validation and CLI overrides."""

    def test_defaults(self):
        config = WorkerServiceConfig()
        assert config.worker.light_workers == 2
        assert config.worker.heavy_workers == 1
        assert config.worker.output_dir == "/tmp/output"
        assert config.redis.key_prefix == "bull"
        assert config.app.log_level == "INFO"

    def test_dsn_from_parts(self):
        db = DatabaseConfig(host="db", port=5433, user="u", password="p@ss", name="jobs")
        assert db.dsn == "postgresql+psycopg2://u:p%40ss@db:5433/jobs"

    def test_dsn_url_wins(self):
        db = DatabaseConfig(url="sqlite:///jobs.db", host="db")
        assert db.dsn == "sqlite:///jobs.db"

    def test_negative_worker_count_rejected(self):
        with pytest.raises(ValidationError):
            WorkerServiceConfig.from_dict({"worker": {"light_workers": -1}})

    def test_unknown_worker_type_rejected(self):
        with pytest.raises(ValidationError):
            WorkerServiceConfig.from_dict({"worker": {"worker_type": "medium"}})

    def test_merge_cli_overrides(self):
        config = WorkerServiceConfig().merge_cli_overrides({
            "light": 4,
            "heavy": 0,
            "only": "light",
            "output_dir": "/data/out",
            "log_level": "debug",
            "database_url": "sqlite:///x.db",
        })
        assert config.worker.light_workers == 4
        assert config.worker.heavy_workers == 0
        assert config.worker.worker_type == "light"
        assert config.worker.output_dir == "/data/out"
        assert config.app.log_level == "DEBUG"
        assert config.database.url == "sqlite:///x.db"

    def test_merge_cli_ignores_none(self):
        config = WorkerServiceConfig().merge_cli_overrides({"light": None})
        assert config.worker.light_workers == 2
