"""
typedapi — Test Configuration (conftest.py)
============================================

What:  Shared pytest fixtures for the entire test suite.
Why:   Provides reusable test infrastructure (upload storage, the tutorial
       app, raw and derived HTTP clients, sample files).
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── upload_store: UploadStore rooted in the test's tmp_path
    ├── greetings_app: FastAPI app serving MyApi with that store
    ├── test_client: HTTPX AsyncClient talking to greetings_app in-process
    ├── api_client: HttpApiClient derived from MyApi, same transport
    ├── hello_headers: Valid headers for Greetings/hello-world
    └── sample_file: A small CSV file wrapped as PersistedFile
"""

import os
import tempfile

# Override settings for testing BEFORE any typedapi imports
# Why: settings is a module-level singleton read at import time
os.environ["UPLOAD_ROOT"] = tempfile.mkdtemp(prefix="typedapi_test_")
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce noise during tests
os.environ["HANDLER_TIMEOUT_SECONDS"] = "5"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from typedapi.client import HttpApiClient
from typedapi.greetings.api import MyApi
from typedapi.greetings.handlers import dispatch_table
from typedapi.multipart import PersistedFile, UploadStore
from typedapi.server import create_app


@pytest.fixture
def upload_store(tmp_path):
    """
    Provides an UploadStore writing into a per-test directory.

    What:    Upload root under pytest's tmp_path.
    Why:     Tests can assert that request directories are removed.
    """
    root = tmp_path / "uploads"
    root.mkdir()
    return UploadStore(root=str(root), max_size=1024, chunk_size=1024)


@pytest.fixture
def greetings_app(upload_store):
    """The tutorial API as a FastAPI application."""
    return create_app(MyApi, dispatch_table, upload_store=upload_store)


@pytest_asyncio.fixture
async def test_client(greetings_app):
    """
    Provides an async HTTP test client for endpoint testing.

    What:    HTTPX AsyncClient configured to talk to the tutorial app.
    Why:     Enables testing of HTTP endpoints without running a server.
    How:     Uses ASGITransport to route requests directly to the app.

    Usage:
        async def test_users(test_client):
            response = await test_client.get("/users?page=1")
            assert response.status_code == 206
    """
    transport = ASGITransport(app=greetings_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def api_client(greetings_app):
    """HttpApiClient derived from MyApi, calling the app in-process."""
    transport = ASGITransport(app=greetings_app)
    async with HttpApiClient.make(MyApi, base_url="http://test", transport=transport) as client:
        yield client


@pytest.fixture
def hello_headers():
    return {"X-API-Key": "test-key", "X-Request-ID": "req-0001"}


@pytest.fixture
def sample_file(tmp_path):
    """
    Provides a small CSV file as a PersistedFile.

    What:    Two rows of CSV on disk, wrapped for the multipart client.
    Why:     Upload tests need real bytes to stream.
    """
    path = tmp_path / "people.csv"
    path.write_bytes(b"name,id\nJames,123\n")
    return PersistedFile.from_path(path, content_type="text/csv")
