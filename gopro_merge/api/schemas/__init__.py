from .upload import ChapterResponse, GroupResponse, UploadResponse
from .job import JobListResponse, JobResponse, ProcessRequest, ProcessResponse, QueuedJobResponse
from .files import FileListResponse, OutputFileResponse

__all__ = [
    "ChapterResponse", "GroupResponse", "UploadResponse",
    "JobListResponse", "JobResponse", "ProcessRequest", "ProcessResponse", "QueuedJobResponse",
    "FileListResponse", "OutputFileResponse",
]
