from .base import Base, SessionLocal, create_db_engine, engine, get_db, make_session_factory
from .job import Job, JobStatus, JobEvent
from .output import OutputFile
from .group import SequenceGroupRecord

__all__ = [
    "Base",
    "get_db",
    "engine",
    "SessionLocal",
    "create_db_engine",
    "make_session_factory",
    "Job",
    "JobStatus",
    "JobEvent",
    "OutputFile",
    "SequenceGroupRecord",
]
