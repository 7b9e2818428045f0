"""Session channel events. ``attempt`` and ``seq`` order the events of one job."""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _JobEventMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    group_id: str
    job_id: str
    attempt: int = 1
    seq: int = 0

    @property
    def is_terminal(self) -> bool:
        return False


class ProgressUpdate(_JobEventMessage):
    type: Literal["job-progress"] = "job-progress"
    progress: int = Field(ge=0, le=100)
    stage: str
    detail: str | None = None


class JobCompleted(_JobEventMessage):
    type: Literal["job-complete"] = "job-complete"
    output_filename: str
    size_bytes: int

    @property
    def is_terminal(self) -> bool:
        return True


class JobFailed(_JobEventMessage):
    type: Literal["job-error"] = "job-error"
    error: str
    error_code: str

    @property
    def is_terminal(self) -> bool:
        return True


SessionEvent = Annotated[
    Union[ProgressUpdate, JobCompleted, JobFailed],
    Field(discriminator="type"),
]

_session_event_adapter = TypeAdapter(SessionEvent)


def parse_event(payload: str | bytes) -> ProgressUpdate | JobCompleted | JobFailed:
    return _session_event_adapter.validate_json(payload)
