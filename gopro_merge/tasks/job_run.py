import uuid
from datetime import datetime, timezone

import structlog
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from gopro_merge.core.config import settings
from gopro_merge.core.exceptions import JobFailure
from gopro_merge.models import Job, JobEvent, JobStatus, OutputFile
from gopro_merge.services.events import JobCompleted, JobFailed, ProgressUpdate

logger = structlog.get_logger()

PROGRESS_CEILING = 90


class JobSnapshot(BaseModel):
    """Immutable view of a job. Replaced, never mutated, on each transition."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    session_id: str
    group_id: str
    status: JobStatus
    progress: int
    stage: str
    detail: str | None = None
    attempt: int
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def from_job(cls, job: Job) -> "JobSnapshot":
        return cls(
            job_id=str(job.id),
            session_id=job.session_id,
            group_id=job.group_id,
            status=job.status,
            progress=job.progress,
            stage=job.stage,
            detail=job.detail,
            attempt=job.attempts,
            error_code=job.error_code,
            error_message=job.error_message,
        )


class JobRun:
    """
    One execution attempt of a job, owned by a single worker.

    Every change produces a new JobSnapshot, is written to the job row and is
    published on the session channel with an increasing sequence number.
    Progress never decreases and stays at or below PROGRESS_CEILING until
    the job completes.
    """

    def __init__(self, db: Session, job: Job, publisher) -> None:
        self.db = db
        self.job = job
        self.publisher = publisher
        self.snapshot = JobSnapshot.from_job(job)
        self._seq = 0

    def start(self) -> None:
        old_status = self.job.status
        self.job.attempts += 1
        self.job.started_at = datetime.now(timezone.utc)
        self._log_event("PROCESSING_STARTED", old_status, JobStatus.ACTIVE, {"attempt": self.job.attempts})
        self._apply(status=JobStatus.ACTIVE, progress=10, stage="preparing", detail=None,
                    attempt=self.job.attempts)
        self._emit_progress()

    def advance(self, progress: int, stage: str, detail: str | None = None) -> None:
        progress = min(max(int(progress), self.snapshot.progress), PROGRESS_CEILING)
        if progress == self.snapshot.progress and stage == self.snapshot.stage:
            return
        self._apply(progress=progress, stage=stage, detail=detail)
        self._emit_progress()

    def complete(self, output_path, created_at: datetime) -> OutputFile:
        """Record the output file and mark the job COMPLETED in one commit."""
        output = OutputFile(
            session_id=self.job.session_id,
            job_id=self.job.id,
            group_id=self.job.group_id,
            filename=output_path.name,
            size_bytes=output_path.stat().st_size,
            created_at=created_at,
        )
        self.db.add(output)
        self.job.completed_at = datetime.now(timezone.utc)
        self._log_event("PROCESSING_COMPLETED", JobStatus.ACTIVE, JobStatus.COMPLETED,
                        {"filename": output.filename, "size_bytes": output.size_bytes})
        self._apply(status=JobStatus.COMPLETED, progress=100, stage="completed", detail=None,
                    error_code=None, error_message=None)

        self._emit(JobCompleted(
            group_id=self.snapshot.group_id,
            job_id=self.snapshot.job_id,
            output_filename=output.filename,
            size_bytes=output.size_bytes,
            **self._ordering(),
        ))
        return output

    def fail(self, error: JobFailure) -> None:
        message = str(error)[:settings.max_error_length]
        self.db.rollback()
        self.job.completed_at = datetime.now(timezone.utc)
        self._log_event("PROCESSING_FAILED", JobStatus.ACTIVE, JobStatus.FAILED, {"error_code": error.code})
        self._apply(status=JobStatus.FAILED, stage="failed", error_code=error.code, error_message=message)

        self._emit(JobFailed(
            group_id=self.snapshot.group_id,
            job_id=self.snapshot.job_id,
            error=message,
            error_code=error.code,
            **self._ordering(),
        ))

    def _apply(self, **changes) -> None:
        self.snapshot = self.snapshot.model_copy(update=changes)
        self.job.status = self.snapshot.status
        self.job.progress = self.snapshot.progress
        self.job.stage = self.snapshot.stage
        self.job.detail = self.snapshot.detail
        self.job.error_code = self.snapshot.error_code
        self.job.error_message = self.snapshot.error_message
        self.db.commit()

    def _log_event(self, event_type: str, old_status, new_status, metadata=None) -> None:
        event = JobEvent(
            id=uuid.uuid4(),
            job_id=self.job.id,
            event_type=event_type,
            old_status=old_status,
            new_status=new_status,
            event_data=metadata,
        )
        self.db.add(event)

    def _ordering(self) -> dict:
        self._seq += 1
        return {"attempt": self.snapshot.attempt, "seq": self._seq}

    def _emit_progress(self) -> None:
        self._emit(ProgressUpdate(
            group_id=self.snapshot.group_id,
            job_id=self.snapshot.job_id,
            progress=self.snapshot.progress,
            stage=self.snapshot.stage,
            detail=self.snapshot.detail,
            **self._ordering(),
        ))

    def _emit(self, event) -> None:
        try:
            self.publisher.publish(self.snapshot.session_id, event)
        except Exception as e:
            logger.error("event_publish_failed", job_id=self.snapshot.job_id, error=str(e))
