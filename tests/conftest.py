"""
Test configuration and fixtures for the Tag Audit API.

DATABASE_URL is pointed at a throwaway SQLite file before anything from the
app package is imported, so the engine in app.platform.db.session never
touches a real database.
"""

import os
import tempfile
from typing import Generator

from dotenv import load_dotenv

import pytest
from fastapi.testclient import TestClient

load_dotenv()

test_db_url = os.getenv("TEST_DATABASE_URL")
if test_db_url:
    os.environ["DATABASE_URL"] = test_db_url
else:
    test_db_path = os.path.join(tempfile.mkdtemp(), "test_audits.db")
    os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{test_db_path}"


@pytest.fixture(scope="session")
def test_app():
    """Create FastAPI test application."""
    from app.main import app

    return app


@pytest.fixture(scope="function")
def client(test_app) -> Generator[TestClient, None, None]:
    """
    Create a test client for making HTTP requests.
    Entering the client runs the lifespan (tables + job queue).
    """
    with TestClient(test_app) as test_client:
        yield test_client


class RecordingQueue:
    """Stands in for AuditJobQueue in route tests; records enqueued jobs."""

    def __init__(self):
        self.enqueued = []

    def enqueue(self, store_job_id: str, url: str):
        self.enqueued.append((store_job_id, url))

    def status(self):
        return {
            "queueLength": len(self.enqueued),
            "isProcessing": False,
            "scheduledRetries": 0,
            "jobs": [],
        }


@pytest.fixture
def queue_client(client, test_app):
    """Client whose app uses a RecordingQueue instead of the real scheduler."""
    real_queue = test_app.state.job_queue
    recording = RecordingQueue()
    test_app.state.job_queue = recording
    client.recording_queue = recording

    yield client

    test_app.state.job_queue = real_queue
