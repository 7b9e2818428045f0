import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from gopro_merge.api.dependencies import DatabaseSession, Storage, require_session_id
from gopro_merge.api.schemas import FileListResponse, OutputFileResponse
from gopro_merge.models import OutputFile

logger = structlog.get_logger()
router = APIRouter(tags=["Files"])


@router.get(
    "/files/{session_id}",
    response_model=FileListResponse,
    summary="Merged files of a session",
)
async def list_files(db: DatabaseSession, session_id: str = Depends(require_session_id)):
    outputs = (
        db.query(OutputFile)
        .filter(OutputFile.session_id == session_id)
        .order_by(OutputFile.created_at)
        .all()
    )
    return FileListResponse(files=[OutputFileResponse.model_validate(o) for o in outputs])


@router.get(
    "/download/{session_id}/{filename}",
    response_class=FileResponse,
    summary="Download a merged file",
)
async def download_file(
    filename: str,
    db: DatabaseSession,
    storage: Storage,
    session_id: str = Depends(require_session_id),
):
    record = (
        db.query(OutputFile)
        .filter(OutputFile.session_id == session_id, OutputFile.filename == filename)
        .first()
    )
    path = storage.resolve_output(session_id, filename) if record else None
    if path is None:
        raise HTTPException(status_code=404, detail="File not found")

    logger.info("file_downloaded", session_id=session_id, filename=filename)
    return FileResponse(path, media_type="video/mp4", filename=filename)
