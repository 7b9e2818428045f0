"""
Retention sweep: removes sessions untouched for FILE_RETENTION_HOURS.

Deletes the session's upload and output directories and its output records.
Jobs still running against a purged session fail with INPUT_MISSING.
"""

import structlog

from gopro_merge.core.config import settings
from gopro_merge.models import OutputFile, SequenceGroupRecord, SessionLocal
from gopro_merge.services import StorageLayout

logger = structlog.get_logger()


def purge_expired_sessions(layout: StorageLayout | None = None, max_age_hours: int | None = None) -> list[str]:
    layout = layout or StorageLayout()
    if max_age_hours is None:
        max_age_hours = settings.file_retention_hours

    expired = layout.expired_sessions(max_age_hours)
    if not expired:
        return []

    db = SessionLocal()
    try:
        for session_id in expired:
            layout.purge_session(session_id)
            db.query(OutputFile).filter(OutputFile.session_id == session_id).delete()
            db.query(SequenceGroupRecord).filter(SequenceGroupRecord.session_id == session_id).delete()
            db.commit()
            logger.info("session_purged", session_id=session_id)
    finally:
        db.close()

    return expired


def main():
    logger.info("retention_sweep_started", max_age_hours=settings.file_retention_hours)
    purged = purge_expired_sessions()
    logger.info("retention_sweep_completed", purged=len(purged))


if __name__ == "__main__":
    main()
