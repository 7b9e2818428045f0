"""Error taxonomy shared by the API, the worker and the pipeline."""


class BatchValidationError(Exception):
    """A request or upload batch is unusable. Reported to the caller; no job is created."""


class NoValidGroupsError(BatchValidationError):
    def __init__(self) -> None:
        super().__init__("No valid GoPro file groups detected")


class DuplicateChapterError(BatchValidationError):
    def __init__(self, group_id: str, chapter: int) -> None:
        super().__init__(f"Duplicate chapter {chapter:02d} in group {group_id}")
        self.group_id = group_id
        self.chapter = chapter


class InvalidSessionError(BatchValidationError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Invalid session id: {session_id!r}")
        self.session_id = session_id


class JobFailure(Exception):
    """Job-level failure. Ends the job in FAILED and is reported on the session channel."""

    code = "PROCESSING_ERROR"


class InputMissingError(JobFailure):
    code = "INPUT_MISSING"

    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"Input file not found: {', '.join(missing)}")
        self.missing = missing


class ConcatenationFailedError(JobFailure):
    code = "CONCATENATION_FAILED"


class ChannelUnavailableError(Exception):
    """The job queue or the event channel cannot be reached."""
