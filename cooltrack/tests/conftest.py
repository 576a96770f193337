import os
import tempfile

_default_test_secret = "test-jwt-secret-for-pytest-only-0000000000000000"
if len(os.environ.get("JWT_SECRET", "")) < 32:
    os.environ["JWT_SECRET"] = _default_test_secret

_scratch_dir = tempfile.mkdtemp(prefix="cooltrack-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_scratch_dir, 'cooltrack_test.db')}")
os.environ.setdefault("UPLOAD_DIR", os.path.join(_scratch_dir, "uploads"))
os.environ["ENV"] = "test"
os.environ["EVENT_PUBLISHER"] = "outbox"

import subprocess
from pathlib import Path

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url

TEST_DATABASE_URL = os.environ["DATABASE_URL"]

from cooltrack import database
from cooltrack import models  # noqa: F401
from cooltrack.core.authorization import Actor, Role
from cooltrack.services import customer_service
from cooltrack.services.grouped_inventory_service import GroupedInventoryService
from cooltrack.services.job_service import JobService
from cooltrack.services.serialized_inventory_service import SerializedInventoryService

ADMIN = Actor(id="admin-1", role=Role.ADMIN)
TECH = Actor(id="tech-1", role=Role.TECHNICIAN)
OTHER_TECH = Actor(id="tech-2", role=Role.TECHNICIAN)


def _is_postgres(database_url: str) -> bool:
    return make_url(database_url).drivername.startswith("postgresql")


def _ensure_database_exists(database_url: str) -> None:
    url = make_url(database_url)

    if not url.drivername.startswith("postgresql"):
        return

    db_name = url.database
    admin_url = url.set(database="postgres")
    admin_engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")

    try:
        with admin_engine.connect() as conn:
            exists = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": db_name},
            ).scalar()
            if not exists:
                safe_db_name = db_name.replace('"', '""')
                conn.execute(text(f'CREATE DATABASE "{safe_db_name}"'))
    finally:
        admin_engine.dispose()


def _clear_tables() -> None:
    with database.engine.begin() as conn:
        if _is_postgres(TEST_DATABASE_URL):
            # TRUNCATE does not fire the row-level ledger triggers.
            quoted = ", ".join(f'"{t.name}"' for t in database.Base.metadata.sorted_tables)
            conn.execute(text(f"TRUNCATE TABLE {quoted} RESTART IDENTITY CASCADE"))
        else:
            for table in reversed(database.Base.metadata.sorted_tables):
                conn.execute(table.delete())


@pytest.fixture(scope="session", autouse=True)
def _prepare_test_database() -> None:
    database.configure_database()

    if _is_postgres(TEST_DATABASE_URL):
        _ensure_database_exists(TEST_DATABASE_URL)

        env = os.environ.copy()
        env["DATABASE_URL"] = TEST_DATABASE_URL

        subprocess.run(
            ["alembic", "upgrade", "head"],
            check=True,
            cwd=Path(__file__).resolve().parents[2],
            env=env,
        )
    else:
        database.Base.metadata.create_all(bind=database.engine)


@pytest.fixture(scope="function", autouse=True)
def _truncate_tables_between_tests():
    _clear_tables()
    yield
    _clear_tables()


class RecordingPublisher:
    def __init__(self):
        self.events = []

    def publish(self, scope: str, event: str, payload: dict) -> None:
        self.events.append((scope, event, payload))

    def names(self) -> list:
        return [event for _, event, _ in self.events]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def grouped(publisher):
    return GroupedInventoryService(publisher)


@pytest.fixture
def serialized(publisher):
    return SerializedInventoryService(publisher)


@pytest.fixture
def jobs(publisher, grouped, serialized):
    return JobService(publisher, grouped=grouped, serialized=serialized)


@pytest.fixture
def db_session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def customer():
    return customer_service.create_customer(
        {
            "name": "Ana Reyes",
            "email": "ana@example.com",
            "phone": "555-0100",
            "address": "12 Harbor Rd",
        }
    )


@pytest.fixture
def make_job(jobs, customer):
    def _make(**overrides):
        data = {"customer_id": customer.id, "type": "installation", "assigned_to": TECH.id}
        data.update(overrides)
        return jobs.create_job(data, ADMIN)

    return _make


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from cooltrack.main import app

    return TestClient(app)


@pytest.fixture
def admin():
    return ADMIN


@pytest.fixture
def tech():
    return TECH


@pytest.fixture
def other_tech():
    return OTHER_TECH


@pytest.fixture
def auth_headers(client):
    def _headers(user_id: str = "admin-1", role: str = "admin") -> dict:
        resp = client.post("/auth/token", json={"user_id": user_id, "role": role})
        assert resp.status_code == 200, f"token request failed: {resp.status_code} {resp.text}"
        data = resp.json()
        assert "access_token" in data, f"token response missing access_token: {data}"
        return {"Authorization": f"Bearer {data['access_token']}"}

    return _headers
