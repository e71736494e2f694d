import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from webapp.main import create_app
from webapp.files.storage import StubObjectStore
from webapp.shared.config import Settings
from webapp.shared.db import Base, Database

JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF"  # 10 bytes
PNG_HEADER = b"\x89PNG\r\n\x1a\n"

BASELINE_HEADERS = {
    "cache-control": "no-cache, no-store, must-revalidate",
    "pragma": "no-cache",
    "x-content-type-options": "nosniff",
}


def assert_baseline_headers(res):
    for name, value in BASELINE_HEADERS.items():
        assert res.headers[name] == value


def count(database: Database, model) -> int:
    with database.session() as s:
        return s.scalar(select(func.count()).select_from(model))


@pytest.fixture
def settings():
    return Settings(
        ENV="test",
        DATABASE_URL="sqlite://",
        DB_CONNECT_RETRIES=1,
        DB_RETRY_BASE_SECONDS=0,
        OTEL_EXPORTER_OTLP_ENDPOINT=None,
    )


@pytest.fixture
def database(settings):
    db = Database.from_settings(settings)
    # test mode skips schema sync at startup
    Base.metadata.create_all(bind=db.engine)
    yield db
    db.dispose()


@pytest.fixture
def store():
    return StubObjectStore("test-bucket")


@pytest.fixture
def client(settings, database, store):
    app = create_app(settings, database, store)
    with TestClient(app) as c:
        yield c
