"""
Integration test fixtures: the FastAPI app with SQLite, a per-test storage
root and the queue and Redis listener mocked.
"""

from typing import Generator
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from gopro_merge.api.dependencies import get_storage
from gopro_merge.api.main import app
from gopro_merge.models import get_db


@pytest.fixture
def job_queue() -> MagicMock:
    queue = MagicMock()
    queue.enqueue.side_effect = lambda job: str(job.id)
    return queue


@pytest.fixture(scope="function")
def client(session_factory, storage, job_queue) -> Generator[TestClient, None, None]:
    """Create a test client with overridden dependencies."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    # Patch services where they're used (not where they're defined)
    with patch("gopro_merge.api.main.RedisEventListener"), \
         patch("gopro_merge.api.routers.jobs.get_job_queue", return_value=job_queue):
        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_storage] = lambda: storage
        with TestClient(app) as test_client:
            yield test_client
        app.dependency_overrides.clear()


def chapter_upload(*names: str, size: int = 2048) -> list[tuple]:
    return [("files", (name, b"\x00" * size, "video/mp4")) for name in names]


@pytest.fixture
def uploaded_session(client) -> dict:
    """Upload two sequences and return the response body."""
    response = client.post(
        "/api/upload",
        files=chapter_upload("GX020150.MP4", "GX010150.MP4", "GX010150.LRV", "GH010007.MP4"),
    )
    assert response.status_code == 200
    return response.json()
