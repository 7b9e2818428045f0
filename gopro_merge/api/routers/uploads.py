from pathlib import Path

import structlog
from fastapi import APIRouter, File, HTTPException, UploadFile, status

from gopro_merge.api.dependencies import DatabaseSession, SessionId, Storage
from gopro_merge.api.schemas import GroupResponse, UploadResponse
from gopro_merge.core.config import settings
from gopro_merge.core.exceptions import BatchValidationError, NoValidGroupsError
from gopro_merge.models import SequenceGroupRecord
from gopro_merge.services import FileDescriptor, SequenceGroup, group_files
from gopro_merge.services.filenames import ACCEPTED_EXTENSIONS
from gopro_merge.services.storage import StorageLayout, safe_filename

logger = structlog.get_logger()
router = APIRouter(tags=["Uploads"])

CHUNK_SIZE = 1024 * 1024


def _validate_batch(files: list[UploadFile]) -> list[str]:
    if not files:
        raise HTTPException(status_code=400, detail="No files provided")
    if len(files) > settings.max_files_per_upload:
        raise HTTPException(
            status_code=400,
            detail=f"Too many files. Max: {settings.max_files_per_upload}",
        )

    names = []
    for file in files:
        name = safe_filename(file.filename)
        if name is None:
            raise HTTPException(status_code=400, detail="No filename provided")
        if Path(name).suffix.lower() not in ACCEPTED_EXTENSIONS:
            raise HTTPException(
                status_code=400,
                detail=f"Unsupported format: {name}. Allowed: {sorted(ACCEPTED_EXTENSIONS)}",
            )
        if file.size is not None and file.size > settings.max_file_size_bytes:
            raise HTTPException(
                status_code=400,
                detail=f"File too large: {name}. Max: {settings.max_file_size_mb}MB",
            )
        names.append(name)
    return names


def _claim_paths(storage: StorageLayout, session_id: str, names: list[str]) -> list[Path]:
    """Target paths for a batch. Stored chapters are read-only, so existing names are refused."""
    if len(set(names)) != len(names):
        raise HTTPException(status_code=400, detail="Duplicate file names in upload")

    paths = [storage.upload_path(session_id, name) for name in names]
    existing = [path.name for path in paths if path.exists()]
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Already uploaded to this session: {', '.join(existing)}",
        )
    return paths


def _discard(paths: list[Path]) -> None:
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("upload_cleanup_failed", path=str(path), error=str(e))


def _regroup_session(db, session_id: str, descriptors: list[FileDescriptor]) -> list[SequenceGroup]:
    """Group the batch together with the session's earlier chapters; return the groups it touches."""
    previous = [
        FileDescriptor(
            original_name=chapter["original_name"],
            stored_path=chapter["stored_path"],
            size_bytes=chapter["size_bytes"],
        )
        for record in db.query(SequenceGroupRecord).filter(SequenceGroupRecord.session_id == session_id)
        for chapter in record.chapters
    ]
    new_paths = {descriptor.stored_path for descriptor in descriptors}

    groups = [
        group for group in group_files(previous + descriptors)
        if new_paths.intersection(group.input_paths)
    ]
    if not groups:
        raise NoValidGroupsError()
    return groups


async def _store(file: UploadFile, path: Path) -> int:
    size = 0
    with path.open("wb") as out:
        while chunk := await file.read(CHUNK_SIZE):
            size += len(chunk)
            if size > settings.max_file_size_bytes:
                break
            out.write(chunk)

    if size > settings.max_file_size_bytes:
        path.unlink(missing_ok=True)
        raise HTTPException(
            status_code=400,
            detail=f"File too large: {path.name}. Max: {settings.max_file_size_mb}MB",
        )
    return size


@router.post(
    "/upload",
    response_model=UploadResponse,
    summary="Upload GoPro chapter files",
    description=f"""
Stores the uploaded files under the session and detects the recording sequences they form.

**Accepted extensions:** `.mp4`, `.lrv`, `.thm` (only `.MP4` chapters are merged)

**Limits:** {settings.max_files_per_upload} files, {settings.max_file_size_mb}MB each

Send `X-Session-Id` to add files to an existing session; otherwise a new session is created.
    """,
)
async def upload_files(
    db: DatabaseSession,
    storage: Storage,
    session_id: SessionId,
    files: list[UploadFile] = File(..., description="GoPro chapter files"),
) -> UploadResponse:
    names = _validate_batch(files)
    paths = _claim_paths(storage, session_id, names)

    descriptors = []
    try:
        for file, name, path in zip(files, names, paths):
            size = await _store(file, path)
            descriptors.append(FileDescriptor(original_name=name, stored_path=str(path), size_bytes=size))

        groups = _regroup_session(db, session_id, descriptors)
    except BatchValidationError as e:
        _discard(paths)
        logger.info("upload_rejected", session_id=session_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception:
        _discard(paths)
        raise

    for group in groups:
        record = (
            db.query(SequenceGroupRecord)
            .filter(SequenceGroupRecord.session_id == session_id, SequenceGroupRecord.group_id == group.group_id)
            .first()
        )
        if record is None:
            record = SequenceGroupRecord(session_id=session_id, group_id=group.group_id)
            db.add(record)
        record.encoding = group.encoding.value
        record.sequence_number = group.sequence_number
        record.chapters = [
            {
                "chapter": chapter.number,
                "original_name": chapter.descriptor.original_name,
                "stored_path": chapter.descriptor.stored_path,
                "size_bytes": chapter.descriptor.size_bytes,
            }
            for chapter in group.chapters
        ]
    db.commit()

    logger.info("files_uploaded", session_id=session_id, files=len(descriptors), groups=len(groups))

    return UploadResponse(session_id=session_id, groups=[GroupResponse.from_group(g) for g in groups])
