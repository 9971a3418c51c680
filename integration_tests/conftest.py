import os
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from fastapi.testclient import TestClient
from sqlalchemy import text


if os.environ.get("RUN_INTEGRATION_TESTS") != "1":
    pytest.skip(
        "Integration tests are disabled. Set RUN_INTEGRATION_TESTS=1 to enable.",
        allow_module_level=True,
    )

if not os.environ.get("DATABASE_URL"):
    pytest.skip("DATABASE_URL must be set for integration tests.", allow_module_level=True)

os.environ.setdefault("SECRET_KEY", "integration-test-secret")
os.environ.setdefault("CLEANUP_INTERVAL_SECONDS", "0")

from sportmatch import auth, models  # noqa: E402
from sportmatch.api import app  # noqa: E402
from sportmatch.classifier import ClassifierVerdict, get_classifier  # noqa: E402
from sportmatch.database import Base, SessionLocal, engine, get_db  # noqa: E402


class _ApproveAll:
    def classify(self, message: str) -> ClassifierVerdict:
        return ClassifierVerdict(kind="approved")


def _run_migrations() -> None:
    project_root = Path(__file__).resolve().parents[1]
    config = Config(str(project_root / "alembic.ini"))
    config.set_main_option("script_location", str(project_root / "alembic"))
    command.upgrade(config, "head")


@pytest.fixture(scope="session", autouse=True)
def _ensure_schema():
    _run_migrations()
    yield
    Base.metadata.drop_all(bind=engine)
    with engine.begin() as conn:
        conn.execute(text("DROP TABLE IF EXISTS alembic_version"))


@pytest.fixture()
def db_session():
    db = SessionLocal()
    try:
        tables = [t.name for t in Base.metadata.sorted_tables]
        if tables:
            db.execute(text(f"TRUNCATE TABLE {', '.join(tables)} RESTART IDENTITY CASCADE"))
            db.commit()
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(db_session):
    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_classifier] = _ApproveAll
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def helpers(client, db_session):
    def register_user(email: str, name: str = "Player") -> str:
        resp = client.post(
            "/register",
            json={"email": email, "password": "password123", "confirm_password": "password123", "name": name},
        )
        assert resp.status_code == 200
        return resp.json()["access_token"]

    def login(email: str, password: str) -> str:
        resp = client.post("/login", json={"email": email, "password": password})
        assert resp.status_code == 200
        return resp.json()["access_token"]

    def make_moderator(email: str = "mod@test.ro", password: str = "moderator123") -> None:
        moderator = models.User(
            email=email,
            password_hash=auth.get_password_hash(password),
            role=models.UserRole.moderator,
            name="Moderator",
        )
        db_session.add(moderator)
        db_session.commit()

    def auth_header(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    return {
        "client": client,
        "db": db_session,
        "register_user": register_user,
        "login": login,
        "make_moderator": make_moderator,
        "auth_header": auth_header,
    }
