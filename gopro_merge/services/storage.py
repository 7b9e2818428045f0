import re
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path

import structlog

from gopro_merge.core.config import settings
from gopro_merge.core.exceptions import InvalidSessionError

logger = structlog.get_logger()

SESSION_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,64}")
OUTPUT_EXTENSION = ".mp4"


def is_valid_session_id(session_id: str) -> bool:
    return bool(session_id) and SESSION_ID_PATTERN.fullmatch(session_id) is not None


def safe_filename(name: str | None) -> str | None:
    """Strip directory parts from a client supplied name; None if nothing usable remains."""
    if not name:
        return None
    base = Path(name.replace("\\", "/")).name
    if base in ("", ".", ".."):
        return None
    return base


class StorageLayout:
    """Filesystem layout: ``<root>/<session_id>/<filename>`` for uploads and outputs."""

    def __init__(self, upload_root: str | Path | None = None, output_root: str | Path | None = None) -> None:
        self.upload_root = Path(upload_root or settings.upload_dir)
        self.output_root = Path(output_root or settings.output_dir)

    def ensure_roots(self) -> None:
        for root in (self.upload_root, self.output_root):
            root.mkdir(parents=True, exist_ok=True)

    def _session_dir(self, root: Path, session_id: str) -> Path:
        if not is_valid_session_id(session_id):
            raise InvalidSessionError(session_id)
        return root / session_id

    def upload_dir(self, session_id: str) -> Path:
        return self._session_dir(self.upload_root, session_id)

    def output_dir(self, session_id: str) -> Path:
        return self._session_dir(self.output_root, session_id)

    def upload_path(self, session_id: str, filename: str) -> Path:
        """Path an uploaded file is stored at. Creates the session upload directory."""
        name = safe_filename(filename)
        if name is None:
            raise ValueError(f"Unusable filename: {filename!r}")
        directory = self.upload_dir(session_id)
        directory.mkdir(parents=True, exist_ok=True)
        return directory / name

    @staticmethod
    def output_filename(group_id: str, created_at: datetime) -> str:
        timestamp = created_at.astimezone(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        return f"GoPro_Merged_{group_id}_{timestamp}{OUTPUT_EXTENSION}"

    def prepare_output(self, session_id: str, filename: str) -> Path:
        directory = self.output_dir(session_id)
        directory.mkdir(parents=True, exist_ok=True)
        return directory / filename

    def resolve_output(self, session_id: str, filename: str) -> Path | None:
        """Existing output file of a session, or None. Never resolves outside the session dir."""
        if not is_valid_session_id(session_id) or safe_filename(filename) != filename:
            return None
        path = self.output_root / session_id / filename
        return path if path.is_file() else None

    @staticmethod
    def find_missing(paths: list[str]) -> list[str]:
        return [path for path in paths if not Path(path).is_file()]

    def expired_sessions(self, max_age_hours: int, now: datetime | None = None) -> list[str]:
        """Sessions whose upload and output directories were all last touched before the cutoff."""
        now = now or datetime.now(timezone.utc)
        cutoff = (now - timedelta(hours=max_age_hours)).timestamp()

        latest: dict[str, float] = {}
        for root in (self.upload_root, self.output_root):
            if not root.is_dir():
                continue
            for entry in root.iterdir():
                if not entry.is_dir() or not is_valid_session_id(entry.name):
                    continue
                mtime = entry.stat().st_mtime
                latest[entry.name] = max(mtime, latest.get(entry.name, mtime))

        return sorted(session_id for session_id, mtime in latest.items() if mtime < cutoff)

    def purge_session(self, session_id: str) -> None:
        for directory in (self.upload_dir(session_id), self.output_dir(session_id)):
            if directory.exists():
                shutil.rmtree(directory)
                logger.info("session_directory_removed", session_id=session_id, path=str(directory))
