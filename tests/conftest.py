import pytest
import sqlite3
from pathlib import Path
from PIL import Image
from photo_frame.database.schema import init_schema
from photo_frame.database.ops import DBOperations
from photo_frame.guards import OperationGuard
from photo_frame.models import ScannedFile

@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:", check_same_thread=False)
    init_schema(c)
    try:
        yield c
    finally:
        c.close()

@pytest.fixture
def photos_dir(tmp_path):
    d = tmp_path / "photos"
    d.mkdir()
    return d

@pytest.fixture
def share_root(tmp_path):
    d = tmp_path / "share"
    d.mkdir()
    return d

@pytest.fixture
def db_ops(conn, photos_dir):
    """Returns a DBOperations instance attached to the in-memory DB."""
    return DBOperations(conn, photos_dir)

@pytest.fixture
def fetch_guard():
    return OperationGuard("fetch")

@pytest.fixture
def scan_guard():
    return OperationGuard("scan")

def make_image(path: Path, size=(64, 48), color=(200, 30, 30)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path, "JPEG")
    return path

def scanned(path: str, size: int = 100) -> ScannedFile:
    return ScannedFile(
        path=path,
        file_name=Path(path).name,
        size_bytes=size,
        last_modified="2020-01-01T00:00:00+00:00",
    )
