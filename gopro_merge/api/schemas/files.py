from datetime import datetime

from pydantic import BaseModel, ConfigDict


class OutputFileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    group_id: str
    filename: str
    size_bytes: int
    created_at: datetime


class FileListResponse(BaseModel):
    files: list[OutputFileResponse]
