"""Test configuration and fixtures."""

import io
import os
import tempfile

# Point the application at a scratch directory before the package is imported.
os.environ.setdefault("IMAGESHELF_ROOT", tempfile.mkdtemp(prefix="imageshelf-tests-"))
os.environ.setdefault("IMAGESHELF_STORE", "json")

import pytest
from fastapi.testclient import TestClient
from PIL import Image as PILImage

from imageshelf import app, get_store, get_analyzer
from imageshelf.analysis import AnalysisAdapter
from imageshelf.errors import ProviderError
from imageshelf.store import ImageRecord, JsonImageStore, SqlImageStore


def make_record(image_id: str, original_name: str, tags, filename: str = None) -> ImageRecord:
    filename = filename or f"1700000000000-{image_id}.png"
    return ImageRecord(
        id=image_id,
        filename=filename,
        original_name=original_name,
        url=f"/uploads/{filename}",
        tags=list(tags),
        created_at="2024-01-01T00:00:00Z",
    )


def png_bytes(size=(8, 8), color=(200, 30, 30)) -> bytes:
    buffer = io.BytesIO()
    PILImage.new("RGB", size, color).save(buffer, "PNG")
    return buffer.getvalue()


class FakeProvider:
    """Provider double: returns ``text`` or raises ``error``."""

    def __init__(self, name, text=None, error=None):
        self.name = name
        self.text = text
        self.error = error
        self.calls = 0

    def describe(self, image):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.text


@pytest.fixture
def uploads_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def json_store(tmp_path, uploads_dir):
    store = JsonImageStore(str(tmp_path / "data" / "db.json"), str(uploads_dir))
    store.load()
    return store


@pytest.fixture
def sql_store(tmp_path, uploads_dir):
    store = SqlImageStore(f"sqlite:///{tmp_path / 'imageshelf.db'}", str(uploads_dir))
    store.load()
    yield store
    store.engine.dispose()


@pytest.fixture(params=["json", "sql"])
def any_store(request):
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def failing_analyzer():
    return AnalysisAdapter([
        FakeProvider("first", error=ProviderError("boom")),
        FakeProvider("second", error=ProviderError("timeout")),
    ])


@pytest.fixture
def client(json_store, failing_analyzer):
    app.dependency_overrides[get_store] = lambda: json_store
    app.dependency_overrides[get_analyzer] = lambda: failing_analyzer
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
