import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from gopro_merge.api.dependencies import DatabaseSession, get_job_or_404, require_session_id
from gopro_merge.api.schemas import (
    JobListResponse,
    JobResponse,
    ProcessRequest,
    ProcessResponse,
    QueuedJobResponse,
)
from gopro_merge.core.exceptions import ChannelUnavailableError
from gopro_merge.core.messaging import get_job_queue
from gopro_merge.models import Job, JobStatus, SequenceGroupRecord
from gopro_merge.services.storage import is_valid_session_id

logger = structlog.get_logger()
router = APIRouter(tags=["Jobs"])


@router.post(
    "/process",
    response_model=ProcessResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Merge uploaded sequences",
    description="""
Queues one concatenation job per requested group. Progress is streamed on
`/ws/sessions/{session_id}`.

**Job status:**
- `QUEUED` - Waiting for a worker
- `ACTIVE` - Being concatenated
- `COMPLETED` - Output ready for download
- `FAILED` - See `error_code` and `error_message`
    """,
)
async def process_groups(request: ProcessRequest, db: DatabaseSession) -> ProcessResponse:
    if not is_valid_session_id(request.session_id):
        raise HTTPException(status_code=400, detail="Invalid session id")

    group_ids = list(dict.fromkeys(request.group_ids))
    records = {
        record.group_id: record
        for record in db.query(SequenceGroupRecord)
        .filter(
            SequenceGroupRecord.session_id == request.session_id,
            SequenceGroupRecord.group_id.in_(group_ids),
        )
        .all()
    }
    unknown = [group_id for group_id in group_ids if group_id not in records]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown groups for session: {', '.join(unknown)}")

    jobs = [
        Job(
            id=uuid.uuid4(),
            session_id=request.session_id,
            group_id=group_id,
            status=JobStatus.QUEUED,
            input_paths=records[group_id].input_paths,
        )
        for group_id in group_ids
    ]
    db.add_all(jobs)
    db.commit()

    queue = get_job_queue()
    try:
        for job in jobs:
            queue.enqueue(job)
    except ChannelUnavailableError as e:
        logger.error("enqueue_failed", session_id=request.session_id, error=str(e))
        for job in jobs:
            db.delete(job)
        db.commit()
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Job queue unavailable")

    logger.info("jobs_queued", session_id=request.session_id, jobs=len(jobs))

    return ProcessResponse(
        jobs=[QueuedJobResponse(job_id=job.id, group_id=job.group_id) for job in jobs],
    )


@router.get(
    "/jobs/{job_id}",
    response_model=JobResponse,
    summary="Job status",
)
async def get_job(job: Job = Depends(get_job_or_404)):
    return JobResponse.from_job(job)


@router.get(
    "/sessions/{session_id}/jobs",
    response_model=JobListResponse,
    summary="Jobs of a session",
    description="Lists the session's jobs, newest first.",
)
async def list_session_jobs(
    db: DatabaseSession,
    session_id: str = Depends(require_session_id),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
):
    query = db.query(Job).filter(Job.session_id == session_id)
    total = query.count()
    jobs = query.order_by(Job.created_at.desc()).offset(skip).limit(limit).all()
    return JobListResponse(jobs=[JobResponse.from_job(j) for j in jobs], total=total)
