from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from gopro_merge.models.job import JobStatus


class ProcessRequest(BaseModel):
    session_id: str = Field(min_length=1, max_length=64)
    group_ids: list[str] = Field(min_length=1)


class QueuedJobResponse(BaseModel):
    job_id: UUID
    group_id: str
    status: str = "queued"


class ProcessResponse(BaseModel):
    jobs: list[QueuedJobResponse]


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    session_id: str
    group_id: str
    status: JobStatus
    progress: int
    stage: str
    detail: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    attempts: int
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    output_filename: str | None = None

    @classmethod
    def from_job(cls, job) -> "JobResponse":
        return cls(
            id=job.id,
            session_id=job.session_id,
            group_id=job.group_id,
            status=job.status,
            progress=job.progress,
            stage=job.stage,
            detail=job.detail,
            error_code=job.error_code,
            error_message=job.error_message,
            attempts=job.attempts,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            output_filename=job.output.filename if job.output is not None else None,
        )


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    total: int
