"""
Integration tests for the upload endpoint.
"""

import pytest

from gopro_merge.models import SequenceGroupRecord


def chapter_upload(*names: str, size: int = 2048) -> list[tuple]:
    return [("files", (name, b"\x00" * size, "video/mp4")) for name in names]


class TestUpload:
    @pytest.mark.integration
    def test_upload_detects_sequences(self, uploaded_session, storage):
        groups = {group["group_id"]: group for group in uploaded_session["groups"]}

        assert set(groups) == {"GX0150", "GH0007"}
        gx = groups["GX0150"]
        assert gx["encoding"] == "X"
        assert gx["sequence"] == 150
        assert gx["chapter_count"] == 2
        assert [c["chapter"] for c in gx["chapters"]] == [1, 2]
        assert gx["total_size"] == 4096

        session_dir = storage.upload_root / uploaded_session["session_id"]
        assert sorted(p.name for p in session_dir.iterdir()) == [
            "GH010007.MP4", "GX010150.LRV", "GX010150.MP4", "GX020150.MP4",
        ]

    @pytest.mark.integration
    def test_groups_are_persisted_for_processing(self, uploaded_session, db_session):
        record = (
            db_session.query(SequenceGroupRecord)
            .filter(
                SequenceGroupRecord.session_id == uploaded_session["session_id"],
                SequenceGroupRecord.group_id == "GX0150",
            )
            .one()
        )
        assert [path.rsplit("/", 1)[-1] for path in record.input_paths] == ["GX010150.MP4", "GX020150.MP4"]

    @pytest.mark.integration
    def test_session_header_is_honoured(self, client):
        response = client.post(
            "/api/upload",
            files=chapter_upload("GX010150.MP4"),
            headers={"X-Session-Id": "my-session_1"},
        )

        assert response.status_code == 200
        assert response.json()["session_id"] == "my-session_1"

    @pytest.mark.integration
    def test_invalid_session_header_is_rejected(self, client):
        response = client.post(
            "/api/upload",
            files=chapter_upload("GX010150.MP4"),
            headers={"X-Session-Id": "../../etc"},
        )

        assert response.status_code == 400

    @pytest.mark.integration
    def test_unsupported_extension_is_rejected(self, client, storage):
        response = client.post("/api/upload", files=chapter_upload("GX010150.MP4", "notes.txt"))

        assert response.status_code == 400
        assert "Unsupported format" in response.json()["detail"]
        assert list(storage.upload_root.iterdir()) == []

    @pytest.mark.integration
    def test_batch_without_video_chapters_is_rejected(self, client):
        response = client.post("/api/upload", files=chapter_upload("GX010150.LRV", "holiday.mp4"))

        assert response.status_code == 400
        assert response.json()["detail"] == "No valid GoPro file groups detected"

    @pytest.mark.integration
    def test_duplicate_chapter_is_rejected(self, client):
        response = client.post(
            "/api/upload",
            files=chapter_upload("GX010150.MP4", "gx010150.mp4"),
        )

        assert response.status_code == 400
        assert "Duplicate chapter" in response.json()["detail"]

    @pytest.mark.integration
    def test_too_many_files_is_rejected(self, client):
        names = [f"GX{chapter:02d}0150.MP4" for chapter in range(1, 52)]

        response = client.post("/api/upload", files=chapter_upload(*names, size=1))

        assert response.status_code == 400
        assert "Too many files" in response.json()["detail"]

    @pytest.mark.integration
    def test_oversized_file_is_rejected(self, client, storage):
        from gopro_merge.core.config import settings

        with pytest.MonkeyPatch.context() as mp:
            mp.setattr(settings, "max_file_size_mb", 0)
            response = client.post("/api/upload", files=chapter_upload("GX010150.MP4"))

        assert response.status_code == 400
        assert "File too large" in response.json()["detail"]


class TestUploadToExistingSession:
    @pytest.mark.integration
    def test_stored_chapter_is_never_overwritten(self, client, storage):
        headers = {"X-Session-Id": "s1"}
        first = client.post("/api/upload", files=chapter_upload("GX010150.MP4", size=16), headers=headers)
        assert first.status_code == 200

        response = client.post("/api/upload", files=chapter_upload("GX010150.MP4", size=64), headers=headers)

        assert response.status_code == 409
        assert (storage.upload_root / "s1" / "GX010150.MP4").stat().st_size == 16

    @pytest.mark.integration
    def test_later_batch_extends_existing_group(self, client, db_session):
        headers = {"X-Session-Id": "s1"}
        client.post("/api/upload", files=chapter_upload("GX010150.MP4"), headers=headers)

        response = client.post("/api/upload", files=chapter_upload("GX020150.MP4"), headers=headers)

        assert response.status_code == 200
        groups = response.json()["groups"]
        assert [(g["group_id"], g["chapter_count"]) for g in groups] == [("GX0150", 2)]
        record = db_session.query(SequenceGroupRecord).filter(SequenceGroupRecord.session_id == "s1").one()
        assert [path.rsplit("/", 1)[-1] for path in record.input_paths] == ["GX010150.MP4", "GX020150.MP4"]

    @pytest.mark.integration
    def test_same_name_twice_in_one_batch_is_rejected(self, client, storage):
        response = client.post(
            "/api/upload",
            files=chapter_upload("GX010150.MP4", "GX010150.MP4"),
            headers={"X-Session-Id": "s1"},
        )

        assert response.status_code == 400
        assert list((storage.upload_root / "s1").iterdir()) == []


class TestRejectedBatchCleanup:
    @pytest.mark.integration
    def test_batch_without_groups_leaves_no_files(self, client, storage):
        response = client.post(
            "/api/upload",
            files=chapter_upload("GX010150.LRV", "holiday.mp4"),
            headers={"X-Session-Id": "s1"},
        )

        assert response.status_code == 400
        assert list((storage.upload_root / "s1").iterdir()) == []

    @pytest.mark.integration
    def test_duplicate_chapter_batch_leaves_no_files(self, client, storage):
        response = client.post(
            "/api/upload",
            files=chapter_upload("GX010150.MP4", "gx010150.mp4"),
            headers={"X-Session-Id": "s1"},
        )

        assert response.status_code == 400
        assert list((storage.upload_root / "s1").iterdir()) == []

    @pytest.mark.integration
    def test_rejected_batch_keeps_earlier_chapters(self, client, storage):
        headers = {"X-Session-Id": "s1"}
        client.post("/api/upload", files=chapter_upload("GX010150.MP4"), headers=headers)

        response = client.post("/api/upload", files=chapter_upload("gx010150.mp4"), headers=headers)

        assert response.status_code == 400
        assert [p.name for p in (storage.upload_root / "s1").iterdir()] == ["GX010150.MP4"]
