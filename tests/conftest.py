"""
Pytest fixtures for Tubely tests.

Each API test gets its own SQLite database and its own asset/staging
directories under tmp_path. ffprobe/ffmpeg are never executed here; tests
patch the media functions used by the upload pipeline, and the S3 client
is a MagicMock behind a real ObjectStore.
"""

import importlib
import os
import sys
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import sqlalchemy as sa

# Set up the environment BEFORE importing config
_test_temp_dir = tempfile.mkdtemp()
TEST_JWT_SECRET = "test-jwt-secret-for-tubely-0123456789"
os.environ["TUBELY_TEST_MODE"] = "1"
os.environ["TUBELY_JWT_SECRET"] = TEST_JWT_SECRET
os.environ["TUBELY_RATE_LIMIT_ENABLED"] = "false"
os.environ["TUBELY_AUDIT_LOG_ENABLED"] = "false"
os.environ["TUBELY_DATABASE_URL"] = f"sqlite:///{Path(_test_temp_dir) / 'tubely.db'}"
os.environ["TUBELY_ASSETS_DIR"] = str(Path(_test_temp_dir) / "assets")
os.environ["TUBELY_STAGING_DIR"] = str(Path(_test_temp_dir) / "staging")

from api.auth import make_jwt  # noqa: E402
from api.database import metadata, videos  # noqa: E402
from api.object_store import ObjectStore  # noqa: E402

OWNER_ID = "user-owner-1"
OTHER_USER_ID = "user-other-2"
TEST_BUCKET = "tubely-test-bucket"
TEST_REGION = "us-east-2"


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {make_jwt(user_id, TEST_JWT_SECRET)}"}


@pytest.fixture(scope="function")
def test_storage(tmp_path: Path) -> dict:
    """Create test asset and staging directories."""
    assets_dir = tmp_path / "assets"
    staging_dir = tmp_path / "staging"
    assets_dir.mkdir(parents=True, exist_ok=True)
    staging_dir.mkdir(parents=True, exist_ok=True)
    return {"assets": assets_dir, "staging": staging_dir}


@pytest.fixture(scope="function")
def test_db_url(tmp_path: Path) -> str:
    """Create a fresh SQLite database with all tables."""
    db_url = f"sqlite:///{tmp_path / 'test.db'}"
    engine = sa.create_engine(db_url)
    metadata.create_all(engine)
    engine.dispose()
    return db_url


@pytest.fixture(scope="function")
def db_engine(test_db_url: str):
    """Synchronous engine for seeding and inspecting rows outside the app."""
    engine = sa.create_engine(test_db_url)
    yield engine
    engine.dispose()


def _insert_video(engine, user_id: str, **fields) -> dict:
    now = datetime.now(timezone.utc)
    record = {
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "title": "Boots on the ground",
        "description": "A test video",
        "thumbnail_url": None,
        "video_url": None,
        "created_at": now,
        "updated_at": now,
    }
    record.update(fields)
    with engine.begin() as conn:
        conn.execute(videos.insert().values(**record))
    return record


def fetch_video_row(engine, video_id: str) -> dict:
    with engine.connect() as conn:
        row = conn.execute(videos.select().where(videos.c.id == video_id)).first()
    return dict(row._mapping) if row is not None else None


@pytest.fixture(scope="function")
def sample_video(db_engine) -> dict:
    """A video record owned by OWNER_ID with no assets yet."""
    return _insert_video(db_engine, OWNER_ID)


@pytest.fixture(scope="function")
def make_video(db_engine):
    """Factory for additional video records."""

    def _make(user_id: str = OWNER_ID, **fields) -> dict:
        return _insert_video(db_engine, user_id, **fields)

    return _make


@pytest.fixture(scope="function")
def s3_client() -> MagicMock:
    client = MagicMock()
    client.generate_presigned_url.return_value = "https://signed.example.com/object?X-Amz-Signature=abc"
    return client


@pytest.fixture(scope="function")
def object_store(s3_client: MagicMock) -> ObjectStore:
    return ObjectStore(bucket=TEST_BUCKET, region=TEST_REGION, client=s3_client)


@pytest.fixture(scope="function")
def api_client(test_storage: dict, test_db_url: str, object_store: ObjectStore, monkeypatch):
    """
    Test client for the API.

    Patches config to use the per-test database and directories, then
    reloads the modules holding the database handle. The app manages its own
    database connection through its lifespan.
    """
    from fastapi.testclient import TestClient

    import config

    monkeypatch.setattr(config, "DATABASE_URL", test_db_url)
    monkeypatch.setattr(config, "ASSETS_DIR", test_storage["assets"])
    monkeypatch.setattr(config, "STAGING_DIR", test_storage["staging"])

    # Reload api.database to create a new Database instance with the test URL
    for module in ("api.database", "api.common", "api.public"):
        if module in sys.modules:
            importlib.reload(sys.modules[module])

    import api.common
    import api.uploads

    monkeypatch.setattr(api.uploads, "ASSETS_DIR", test_storage["assets"])
    monkeypatch.setattr(api.uploads, "STAGING_DIR", test_storage["staging"])
    monkeypatch.setattr(api.common, "ASSETS_DIR", test_storage["assets"])
    monkeypatch.setattr(api.common, "STAGING_DIR", test_storage["staging"])

    from api.object_store import get_object_store
    from api.public import app

    app.dependency_overrides[get_object_store] = lambda: object_store
    try:
        with TestClient(app, raise_server_exceptions=True) as client:
            yield client
    finally:
        app.dependency_overrides.clear()
