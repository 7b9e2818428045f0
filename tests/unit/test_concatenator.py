"""
Unit tests for gopro_merge/services/concatenator.py

ffmpeg and ffprobe are replaced by mocks; the manifest is inspected on disk.
"""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from gopro_merge.services.concatenator import (
    FFmpegConcatenator,
    FFmpegError,
    build_manifest,
    format_media_time,
    manifest_entry,
    parse_progress_time,
)


def fake_process(stderr_lines: list[str], returncode: int = 0) -> MagicMock:
    process = MagicMock()
    process.stderr = iter(stderr_lines)
    process.wait.return_value = returncode
    process.poll.return_value = returncode
    return process


class TestParsing:
    @pytest.mark.unit
    def test_parse_progress_time(self):
        line = "frame=  100 fps=0.0 q=-1.0 size=  1024kB time=00:01:02.50 bitrate=1000kbits/s"
        assert parse_progress_time(line) == pytest.approx(62.5)

    @pytest.mark.unit
    def test_parse_progress_time_uses_last_marker(self):
        assert parse_progress_time("time=00:00:01.00 time=01:00:00.00") == pytest.approx(3600.0)

    @pytest.mark.unit
    def test_parse_progress_time_without_marker(self):
        assert parse_progress_time("Input #0, concat, from 'filelist.txt':") is None

    @pytest.mark.unit
    def test_negative_time_counts_as_zero(self):
        assert parse_progress_time("time=-00:00:00.04") == 0.0

    @pytest.mark.unit
    def test_format_media_time(self):
        assert format_media_time(3723.5) == "01:02:03.50"


class TestManifest:
    @pytest.mark.unit
    def test_entries_keep_order(self):
        assert build_manifest(["/a/GX010150.MP4", "/a/GX020150.MP4"]) == (
            "file '/a/GX010150.MP4'\nfile '/a/GX020150.MP4'\n"
        )

    @pytest.mark.unit
    def test_single_quote_is_escaped(self):
        assert manifest_entry("/up/it's/GX010150.MP4") == "file '/up/it'\\''s/GX010150.MP4'"

    @pytest.mark.unit
    def test_newline_in_path_is_rejected(self):
        with pytest.raises(FFmpegError):
            manifest_entry("/up/bad\nname/GX010150.MP4")


class TestConcatenate:
    @pytest.fixture
    def concatenator(self):
        return FFmpegConcatenator(ffmpeg_path="ffmpeg", ffprobe_path="ffprobe", timeout=0)

    @pytest.fixture
    def inputs(self, temp_dir) -> list[str]:
        paths = []
        for chapter in (1, 2, 3):
            path = temp_dir / f"GX{chapter:02d}0150.MP4"
            path.write_bytes(b"\x00" * 16)
            paths.append(str(path))
        return paths

    @pytest.mark.unit
    def test_builds_stream_copy_command(self, concatenator):
        cmd = concatenator.build_command("/out/filelist.txt", "/out/merged.mp4")

        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-f") + 1] == "concat"
        assert cmd[cmd.index("-safe") + 1] == "0"
        assert cmd[cmd.index("-i") + 1] == "/out/filelist.txt"
        assert cmd[cmd.index("-c") + 1] == "copy"
        assert cmd[-1] == "/out/merged.mp4"

    @pytest.mark.unit
    def test_writes_manifest_in_order_and_removes_it(self, concatenator, inputs, temp_dir):
        output = temp_dir / "out" / "merged.mp4"
        output.parent.mkdir()
        seen = {}

        def popen(cmd, **kwargs):
            manifest = Path(cmd[cmd.index("-i") + 1])
            seen["manifest"] = manifest
            seen["content"] = manifest.read_text()
            return fake_process([])

        with patch("gopro_merge.services.concatenator.subprocess.Popen", side_effect=popen):
            concatenator.concatenate(inputs, output)

        assert seen["manifest"].parent == output.parent
        assert seen["content"] == "".join(f"file '{path}'\n" for path in inputs)
        assert not seen["manifest"].exists()

    @pytest.mark.unit
    def test_reports_increasing_progress_only(self, concatenator, inputs, temp_dir):
        lines = [
            "Input #0, concat, from 'filelist.txt':",
            "size=0kB time=00:00:01.00 bitrate=N/A",
            "size=0kB time=00:00:00.50 bitrate=N/A",
            "size=0kB time=00:00:01.00 bitrate=N/A",
            "size=0kB time=00:00:03.25 bitrate=N/A",
        ]
        reported = []

        with patch("gopro_merge.services.concatenator.subprocess.Popen", return_value=fake_process(lines)):
            concatenator.concatenate(inputs, temp_dir / "merged.mp4", on_progress=reported.append)

        assert reported == [1.0, 3.25]

    @pytest.mark.unit
    def test_nonzero_exit_raises_with_stderr_tail(self, concatenator, inputs, temp_dir):
        lines = ["[concat @ 0x1] Unsafe file name", "filelist.txt: Operation not permitted"]

        with patch(
            "gopro_merge.services.concatenator.subprocess.Popen",
            return_value=fake_process(lines, returncode=1),
        ):
            with pytest.raises(FFmpegError) as exc_info:
                concatenator.concatenate(inputs, temp_dir / "merged.mp4")

        assert "code 1" in str(exc_info.value)
        assert "Operation not permitted" in str(exc_info.value)
        assert exc_info.value.code == "CONCATENATION_FAILED"
        assert list(temp_dir.glob("filelist_*.txt")) == []

    @pytest.mark.unit
    def test_long_stderr_keeps_the_final_cause(self, inputs, temp_dir):
        concatenator = FFmpegConcatenator(ffmpeg_path="ffmpeg", timeout=0, max_error_length=500)
        lines = [f"noise {n:03d} " + "y" * 60 for n in range(30)] + ["REAL_CAUSE: Invalid data found"]

        with patch(
            "gopro_merge.services.concatenator.subprocess.Popen",
            return_value=fake_process(lines, returncode=1),
        ):
            with pytest.raises(FFmpegError) as exc_info:
                concatenator.concatenate(inputs, temp_dir / "merged.mp4")

        message = str(exc_info.value)
        assert message.startswith("FFmpeg failed with code 1: ")
        assert message.endswith("REAL_CAUSE: Invalid data found")
        assert len(message) <= 500

    @pytest.mark.unit
    def test_missing_binary_raises(self, concatenator, inputs, temp_dir):
        with patch(
            "gopro_merge.services.concatenator.subprocess.Popen",
            side_effect=FileNotFoundError("ffmpeg"),
        ):
            with pytest.raises(FFmpegError, match="Could not start ffmpeg"):
                concatenator.concatenate(inputs, temp_dir / "merged.mp4")

        assert list(temp_dir.glob("filelist_*.txt")) == []

    @pytest.mark.unit
    def test_unwritable_output_directory_raises(self, concatenator, inputs, temp_dir):
        with patch("gopro_merge.services.concatenator.subprocess.Popen") as mock_popen:
            with pytest.raises(FFmpegError, match="Could not prepare"):
                concatenator.concatenate(inputs, temp_dir / "missing" / "merged.mp4")

        mock_popen.assert_not_called()

    @pytest.mark.unit
    def test_empty_input_raises(self, concatenator, temp_dir):
        with pytest.raises(FFmpegError):
            concatenator.concatenate([], temp_dir / "merged.mp4")


class TestDurationLookup:
    @pytest.fixture
    def concatenator(self):
        return FFmpegConcatenator(ffmpeg_path="ffmpeg", ffprobe_path="ffprobe")

    @pytest.mark.unit
    def test_probe_duration(self, concatenator):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="12.500000\n")

            assert concatenator.probe_duration("/a.mp4") == pytest.approx(12.5)

    @pytest.mark.unit
    def test_probe_failure_returns_none(self, concatenator):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=1, stdout="")
            assert concatenator.probe_duration("/a.mp4") is None

            mock_run.return_value = MagicMock(returncode=0, stdout="N/A\n")
            assert concatenator.probe_duration("/a.mp4") is None

            mock_run.side_effect = subprocess.TimeoutExpired(cmd="ffprobe", timeout=60)
            assert concatenator.probe_duration("/a.mp4") is None

    @pytest.mark.unit
    def test_total_duration_unknown_if_any_probe_fails(self, concatenator):
        with patch.object(concatenator, "probe_duration", side_effect=[10.0, None]):
            assert concatenator.total_duration(["/a.mp4", "/b.mp4"]) is None

        with patch.object(concatenator, "probe_duration", side_effect=[10.0, 5.5]):
            assert concatenator.total_duration(["/a.mp4", "/b.mp4"]) == pytest.approx(15.5)
