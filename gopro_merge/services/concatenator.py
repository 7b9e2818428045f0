import os
import re
import subprocess
import tempfile
import threading
from collections import deque
from collections.abc import Callable, Sequence
from pathlib import Path

import structlog

from gopro_merge.core.config import settings
from gopro_merge.core.exceptions import ConcatenationFailedError

logger = structlog.get_logger()

PROGRESS_TIME = re.compile(r"time=\s*(-?)(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
STDERR_TAIL_LINES = 20


class FFmpegError(ConcatenationFailedError):
    """Exception raised when FFmpeg cannot produce the merged file."""
    pass


def parse_progress_time(line: str) -> float | None:
    """Last ``time=HH:MM:SS.xx`` marker of an ffmpeg status line, in seconds."""
    matches = PROGRESS_TIME.findall(line)
    if not matches:
        return None
    sign, hours, minutes, seconds = matches[-1]
    if sign:
        return 0.0
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def format_media_time(seconds: float) -> str:
    hours, remainder = divmod(max(seconds, 0.0), 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{int(hours):02d}:{int(minutes):02d}:{secs:05.2f}"


def manifest_entry(path: str) -> str:
    if "\n" in path or "\r" in path:
        raise FFmpegError(f"Path cannot be listed in a concat manifest: {path!r}")
    return "file '" + path.replace("'", "'\\''") + "'"


def build_manifest(paths: Sequence[str]) -> str:
    return "".join(manifest_entry(str(path)) + "\n" for path in paths)


class FFmpegConcatenator:
    """Lossless stream-copy concatenation through the ffmpeg concat demuxer."""

    def __init__(
        self,
        ffmpeg_path: str | None = None,
        ffprobe_path: str | None = None,
        timeout: int | None = None,
        max_error_length: int | None = None,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.ffprobe_path = ffprobe_path or settings.ffprobe_path
        self.timeout = timeout if timeout is not None else settings.concat_timeout_seconds
        self.max_error_length = max_error_length or settings.max_error_length

    def build_command(self, manifest_path: str, output_path: str) -> list[str]:
        return [
            self.ffmpeg_path,
            "-hide_banner", "-nostdin", "-y",
            "-f", "concat",
            "-safe", "0",
            "-i", manifest_path,
            "-c", "copy",
            "-avoid_negative_ts", "make_zero",
            output_path,
        ]

    def concatenate(
        self,
        input_paths: Sequence[str],
        output_path: str | Path,
        on_progress: Callable[[float], None] | None = None,
    ) -> None:
        """
        Join ``input_paths`` in the given order into ``output_path`` without re-encoding.

        ``on_progress`` receives the elapsed media time in seconds, strictly increasing.
        The temporary manifest is removed on every exit path.
        """
        if not input_paths:
            raise FFmpegError("No input files to concatenate")

        output = Path(output_path)
        content = build_manifest(input_paths)
        manifest_path: Path | None = None

        try:
            fd, name = tempfile.mkstemp(prefix="filelist_", suffix=".txt", dir=output.parent)
            manifest_path = Path(name)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)

            cmd = self.build_command(str(manifest_path), str(output))
            logger.info("ffmpeg_started", output_path=str(output), inputs=len(input_paths))
            self._run(cmd, on_progress)
            logger.info("ffmpeg_completed", output_path=str(output))
        except OSError as e:
            raise FFmpegError(f"Could not prepare concatenation: {e}") from e
        finally:
            if manifest_path is not None:
                self._remove_manifest(manifest_path)

    def _run(self, cmd: list[str], on_progress: Callable[[float], None] | None) -> None:
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as e:
            raise FFmpegError(f"Could not start ffmpeg: {e}") from e

        timed_out = threading.Event()
        timer = None
        if self.timeout:
            timer = threading.Timer(self.timeout, self._kill, args=(process, timed_out))
            timer.daemon = True
            timer.start()

        tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        last_elapsed = -1.0
        try:
            # Text mode turns ffmpeg's carriage-return status updates into separate lines.
            for raw_line in process.stderr:
                line = raw_line.strip()
                if not line:
                    continue
                tail.append(line)
                elapsed = parse_progress_time(line)
                if elapsed is not None and elapsed > last_elapsed:
                    last_elapsed = elapsed
                    if on_progress is not None:
                        on_progress(elapsed)
            returncode = process.wait()
        finally:
            if timer is not None:
                timer.cancel()
            if process.poll() is None:
                process.kill()
                process.wait()

        if timed_out.is_set():
            raise FFmpegError(f"FFmpeg timeout after {self.timeout}s")

        if returncode != 0:
            prefix = f"FFmpeg failed with code {returncode}: "
            # Keep the end of stderr; ffmpeg names the cause last.
            budget = max(self.max_error_length - len(prefix), 0)
            diagnostic = "\n".join(tail)[-budget:] if budget else ""
            logger.error("ffmpeg_failed", returncode=returncode, stderr=diagnostic)
            raise FFmpegError(prefix + diagnostic)

    @staticmethod
    def _kill(process: subprocess.Popen, timed_out: threading.Event) -> None:
        if process.poll() is None:
            timed_out.set()
            process.kill()

    @staticmethod
    def _remove_manifest(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("manifest_cleanup_failed", path=str(path), error=str(e))

    def probe_duration(self, path: str) -> float | None:
        """Container duration in seconds, or None when ffprobe cannot tell."""
        cmd = [
            self.ffprobe_path, "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            path,
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=60, check=False)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("ffprobe_failed", path=path, error=str(e))
            return None

        if result.returncode != 0:
            logger.warning("ffprobe_failed", path=path, returncode=result.returncode)
            return None

        try:
            duration = float(result.stdout.strip())
        except ValueError:
            return None
        return duration if duration > 0 else None

    def total_duration(self, paths: Sequence[str]) -> float | None:
        total = 0.0
        for path in paths:
            duration = self.probe_duration(path)
            if duration is None:
                return None
            total += duration
        return total
