import time
from datetime import datetime, timezone
from pathlib import Path
from uuid import UUID

import redis
import structlog

from gopro_merge.core.config import settings
from gopro_merge.core.exceptions import (
    ChannelUnavailableError,
    ConcatenationFailedError,
    InputMissingError,
    JobFailure,
)
from gopro_merge.core.messaging import get_event_publisher
from gopro_merge.models import Job, SessionLocal
from gopro_merge.services import FFmpegConcatenator, StorageLayout
from gopro_merge.services.concatenator import format_media_time

from .job_run import PROGRESS_CEILING, JobRun

logger = structlog.get_logger()
redis_client = redis.from_url(settings.redis_url)

CONCAT_START = 30
UNKNOWN_DURATION_SCALE = 60.0


def acquire_lock(job_id: str, timeout: int | None = None) -> redis.lock.Lock | None:
    """Acquire distributed lock."""
    lock = redis_client.lock(f"lock:job:{job_id}", timeout=timeout or settings.lock_timeout_seconds)
    try:
        if lock.acquire(blocking=False):
            return lock
    except redis.exceptions.RedisError as e:
        raise ChannelUnavailableError(f"Lock store unavailable: {e}") from e
    return None


def map_concat_progress(elapsed: float, total: float | None) -> int:
    """Map elapsed media time onto the 30-90 band of the job's progress."""
    span = PROGRESS_CEILING - CONCAT_START
    if total:
        fraction = min(elapsed / total, 1.0)
    else:
        fraction = elapsed / (elapsed + UNKNOWN_DURATION_SCALE)
    return min(CONCAT_START + int(span * max(fraction, 0.0)), PROGRESS_CEILING)


def process_job(job_id: str) -> dict:
    """Run one concatenation job from QUEUED (or an interrupted ACTIVE) to a terminal state."""
    logger.info("processing_started", job_id=job_id)

    lock = acquire_lock(job_id)
    if not lock:
        logger.info("locked_skipped", job_id=job_id)
        return {"status": "skipped", "reason": "locked"}

    db = SessionLocal()
    start_time = time.time()

    try:
        job = db.query(Job).filter(Job.id == UUID(job_id)).first()

        if not job:
            return {"status": "error", "reason": "job_not_found"}

        if job.status.is_terminal:
            return {"status": "skipped", "reason": str(job.status.value)}

        run = JobRun(db, job, get_event_publisher())
        run.start()

        try:
            output = _concatenate_group(run, job)

        except JobFailure as e:
            logger.error("processing_failed", job_id=job_id, error_code=e.code, error=str(e))
            run.fail(e)
            return {"status": "failed", "error_code": e.code, "error": run.snapshot.error_message}

        except Exception as e:
            failure = ConcatenationFailedError(str(e))
            logger.error("processing_failed", job_id=job_id, error_code=failure.code, error=str(e))
            run.fail(failure)
            return {"status": "failed", "error_code": failure.code, "error": run.snapshot.error_message}

        logger.info(
            "processing_completed",
            job_id=job_id,
            filename=output.filename,
            processing_time=int(time.time() - start_time),
        )
        return {
            "status": "success",
            "job_id": job_id,
            "output_filename": output.filename,
            "size_bytes": output.size_bytes,
        }

    finally:
        try:
            lock.release()
        except redis.exceptions.RedisError:
            pass
        db.close()


def _concatenate_group(run: JobRun, job: Job):
    layout = StorageLayout()
    input_paths = list(job.input_paths)

    missing = layout.find_missing(input_paths)
    if missing:
        raise InputMissingError(missing)
    run.advance(20, "files verified")

    created_at = datetime.now(timezone.utc)
    output_path = layout.prepare_output(job.session_id, layout.output_filename(job.group_id, created_at))
    run.advance(CONCAT_START, "output path prepared")

    concatenator = FFmpegConcatenator()
    total = concatenator.total_duration(input_paths)

    def on_progress(elapsed: float) -> None:
        run.advance(map_concat_progress(elapsed, total), "processing", detail=format_media_time(elapsed))

    try:
        concatenator.concatenate(input_paths, output_path, on_progress=on_progress)
        return run.complete(output_path, created_at)
    except Exception:
        _discard_partial_output(output_path)
        raise


def _discard_partial_output(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("partial_output_cleanup_failed", path=str(path), error=str(e))
