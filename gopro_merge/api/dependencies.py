import uuid
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from gopro_merge.models import Job, get_db
from gopro_merge.services.storage import StorageLayout, is_valid_session_id

DatabaseSession = Annotated[Session, Depends(get_db)]


def get_storage() -> StorageLayout:
    return StorageLayout()


Storage = Annotated[StorageLayout, Depends(get_storage)]


def get_session_id(x_session_id: Annotated[str | None, Header()] = None) -> str:
    """Session named by the X-Session-Id header, or a fresh one."""
    if x_session_id is None or x_session_id == "":
        return uuid.uuid4().hex
    if not is_valid_session_id(x_session_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid session id")
    return x_session_id


SessionId = Annotated[str, Depends(get_session_id)]


def require_session_id(session_id: str) -> str:
    if not is_valid_session_id(session_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid session id")
    return session_id


def get_job_or_404(job_id: uuid.UUID, db: DatabaseSession) -> Job:
    job = db.query(Job).filter(Job.id == job_id).first()
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job
