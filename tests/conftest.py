"""
Pytest configuration and fixtures for Oekaki Backend tests.
"""

import json
import os
import tempfile
import threading

import httpx
import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
_TEST_ROOT = tempfile.mkdtemp(prefix="oekaki_test_")
os.environ["DATABASE_PATH"] = os.path.join(_TEST_ROOT, "oekaki.db")
os.environ["BLOB_DIR"] = os.path.join(_TEST_ROOT, "blobs")
os.environ["S3_BUCKET_NAME"] = ""
os.environ["PREVIEW_HOST_URL"] = "https://preview.test"
os.environ["PREVIEW_HOST_CLIENT_ID"] = "test-client-id"

from oekaki_backend.blob_store import FileBlobStore
from oekaki_backend.catalog import ArtifactCatalog
from oekaki_backend.database import ArtifactDatabase
from oekaki_backend.main import app, get_catalog, get_coordinator
from oekaki_backend.preview_host import PreviewHostClient
from oekaki_backend.submission import SubmissionCoordinator

MAGIC = [0x23, 0x52, 0xFF, 0xAC]
PNG_DATA = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="


class PreviewHostStub:
    """In-process stand-in for the preview host, served through httpx.MockTransport."""

    def __init__(self):
        self.uploads = []
        self.deleted = []
        self.fail_upload = False
        self.fail_delete = False
        self.requests = []
        self._counter = 0
        self._lock = threading.Lock()

    def handler(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
            if request.method == "POST" and request.url.path == "/3/image":
                if self.fail_upload:
                    return httpx.Response(500, json={"success": False})
                self._counter += 1
                self.uploads.append(json.loads(request.content)["image"])
                return httpx.Response(200, json={
                    "success": True,
                    "data": {"id": f"asset{self._counter}", "deletehash": f"token{self._counter}"},
                })
            if request.method == "DELETE" and request.url.path.startswith("/3/image/"):
                if self.fail_delete:
                    return httpx.Response(404, json={"success": False})
                self.deleted.append(request.url.path.rsplit("/", 1)[-1])
                return httpx.Response(200, json={"success": True, "data": True})
            return httpx.Response(404)


@pytest.fixture
def preview_stub():
    return PreviewHostStub()


@pytest.fixture
def preview_host(preview_stub):
    client = PreviewHostClient(
        "https://preview.test",
        "test-client-id",
        timeout=5.0,
        transport=httpx.MockTransport(preview_stub.handler),
    )
    yield client
    client.close()


@pytest.fixture
def database(tmp_path):
    return ArtifactDatabase(tmp_path / "oekaki.db")


@pytest.fixture
def blob_store(tmp_path):
    return FileBlobStore(tmp_path / "blobs")


@pytest.fixture
def coordinator(database, blob_store, preview_host):
    return SubmissionCoordinator(database, blob_store, preview_host)


@pytest.fixture
def catalog(database, blob_store):
    return ArtifactCatalog(database, blob_store)


@pytest.fixture
def client(coordinator, catalog):
    """Create a test client whose app uses the per-test stores."""
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    app.dependency_overrides[get_catalog] = lambda: catalog
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def submission_body():
    """A valid submission body with a three-byte drawing payload."""
    return {
        "payload": MAGIC + [1, 2, 3],
        "description": "a cat",
        "author": "tester",
        "_bs": f"data:image/png;base64,{PNG_DATA}",
    }
