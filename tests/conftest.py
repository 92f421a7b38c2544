"""Shared fixtures. Settings point at a scratch tree before any app module loads."""
import json
import os
import shutil
import tempfile
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image as PILImage

WORK_DIR = Path(tempfile.mkdtemp(prefix="image-assets-tests-"))
STORAGE_DIR = WORK_DIR / "storage"
ASSETS_DIR = STORAGE_DIR / "assets"
CACHE_DIR = WORK_DIR / "cache"

os.environ["ASSETS_BASE_DIRECTORY"] = str(STORAGE_DIR)
os.environ["ASSETS_DIRECTORIES"] = json.dumps([str(STORAGE_DIR), str(ASSETS_DIR)])
os.environ["ASSETS_CACHE_DIR"] = str(CACHE_DIR)
os.environ["ASSETS_DATABASE_URL"] = f"sqlite:///{WORK_DIR / 'test.db'}"
os.environ["ASSETS_RELOAD_COMMAND"] = ""
os.environ["ASSETS_BACKUP_DIR"] = str(WORK_DIR / "backups")
os.environ["ASSETS_ALLOW_ORIGINS"] = json.dumps(["http://allowed.test"])

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import select  # noqa: E402

from app import app  # noqa: E402
from database import get_session  # noqa: E402
from models import FileRecord, Setting  # noqa: E402


def make_image(width=64, height=32, color=(200, 30, 30), fmt="PNG", mode="RGB") -> bytes:
    buf = BytesIO()
    PILImage.new(mode, (width, height), color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture(autouse=True)
def clean_state():
    """Empty storage, cache and index around every test."""
    for d in (STORAGE_DIR, CACHE_DIR):
        shutil.rmtree(d, ignore_errors=True)
    ASSETS_DIR.mkdir(parents=True)
    with get_session() as s:
        for model in (FileRecord, Setting):
            for row in s.exec(select(model)).all():
                s.delete(row)
        s.commit()
    yield


@pytest.fixture
def storage() -> Path:
    return STORAGE_DIR


@pytest.fixture
def assets_dir() -> Path:
    return ASSETS_DIR


@pytest.fixture
def cache_dir() -> Path:
    return CACHE_DIR


@pytest.fixture
def client():
    return TestClient(app)


def pytest_sessionfinish(session, exitstatus):
    shutil.rmtree(WORK_DIR, ignore_errors=True)


@pytest.fixture
def image_bytes():
    """Factory for small encoded test images."""
    return make_image
