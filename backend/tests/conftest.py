import os
import sys
import tempfile

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

# Keep the module-level store out of the repository's data directory.
os.environ.setdefault("CONTENT_DB_PATH", os.path.join(tempfile.mkdtemp(prefix="greengarden-"), "content.sqlite3"))
os.environ.setdefault("CONTENT_SEED_DEMO", "false")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from greengarden.auth import SessionGuard, get_session_guard  # noqa: E402
from greengarden.main import app  # noqa: E402
from greengarden.services.content_store import ContentStore, get_content_store  # noqa: E402
from factories import ADMIN_PASSWORD, ADMIN_USERNAME  # noqa: E402


@pytest.fixture
def store(tmp_path):
    return ContentStore(db_path=str(tmp_path / "content.sqlite3"))


@pytest.fixture
def guard():
    return SessionGuard(username=ADMIN_USERNAME, password=ADMIN_PASSWORD, secret="test-secret", ttl_minutes=60)


@pytest.fixture
def content_app(store, guard):
    app.dependency_overrides[get_content_store] = lambda: store
    app.dependency_overrides[get_session_guard] = lambda: guard
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(content_app):
    return TestClient(content_app)


@pytest.fixture
def admin_headers(client):
    login = client.post("/api/admin/login", json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD})
    assert login.status_code == 200
    # Authenticate through the header only, so tokenless requests stay tokenless.
    client.cookies.clear()
    return {"Authorization": f"Bearer {login.json()['token']}"}
