import os
import re

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("CLEANUP_INTERVAL_SECONDS", "0")

from sportmatch import auth, models
from sportmatch import api as api_module
from sportmatch.api import app
from sportmatch.classifier import ClassifierVerdict, get_classifier
from sportmatch.config import settings
from sportmatch.database import Base, engine, get_db, SessionLocal


_PHONE_NUMBER = re.compile(r"\+?\d[\d\s\-]{7,}\d")

_KEYWORD_VIOLATIONS = {
    "idiot": models.ViolationType.BULLYING,
    "buy now": models.ViolationType.SPAM,
    "hurt you": models.ViolationType.THREATS,
}


class FakeClassifier:
    """Deterministic stand-in for the remote classifier."""

    def __init__(self):
        self.calls = 0
        self.forced = None

    def classify(self, message: str) -> ClassifierVerdict:
        self.calls += 1
        if self.forced is not None:
            return self.forced
        if _PHONE_NUMBER.search(message):
            return ClassifierVerdict(
                kind="rejected",
                reason="Sharing phone numbers is not allowed",
                violation_type=models.ViolationType.PERSONAL_INFO,
                confidence=0.97,
            )
        lowered = message.lower()
        for keyword, violation_type in _KEYWORD_VIOLATIONS.items():
            if keyword in lowered:
                return ClassifierVerdict(
                    kind="rejected",
                    reason=f"Message contains {violation_type.value.lower().replace('_', ' ')}",
                    violation_type=violation_type,
                    confidence=0.9,
                )
        return ClassifierVerdict(kind="approved", confidence=0.99)


@pytest.fixture(scope="session", autouse=True)
def _ensure_schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session():
    db = SessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
        yield db
    finally:
        db.close()


@pytest.fixture()
def fk_session(db_session):
    """A session whose connection enforces foreign keys, like Postgres does."""
    fk_engine = create_engine(settings.database_url, connect_args={"check_same_thread": False})

    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    event.listen(fk_engine, "connect", _enable_foreign_keys)
    db = sessionmaker(bind=fk_engine, autocommit=False, autoflush=False)()
    try:
        yield db
    finally:
        db.close()
        fk_engine.dispose()


@pytest.fixture()
def classifier():
    return FakeClassifier()


@pytest.fixture()
def client(db_session, classifier):
    def _override_get_db():
        yield db_session

    api_module._RATE_LIMIT_STORE.clear()
    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_classifier] = lambda: classifier
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def helpers(client, db_session, classifier):
    def register_user(email: str, name: str = "Player", level: str | None = None) -> str:
        payload = {
            "email": email,
            "password": "password123",
            "confirm_password": "password123",
            "name": name,
        }
        if level:
            payload["level"] = level
        resp = client.post("/register", json=payload)
        assert resp.status_code == 200
        return resp.json()["access_token"]

    def login(email: str, password: str) -> str:
        resp = client.post("/login", json={"email": email, "password": password})
        assert resp.status_code == 200
        return resp.json()["access_token"]

    def make_user(
        email: str,
        password: str = "password123",
        role: models.UserRole = models.UserRole.user,
        name: str = "Player",
    ) -> models.User:
        user = models.User(
            email=email,
            password_hash=auth.get_password_hash(password),
            role=role,
            name=name,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    def make_admin(email: str = "admin@test.ro", password: str = "admin123") -> models.User:
        return make_user(email, password, role=models.UserRole.admin, name="Admin")

    def make_moderator(email: str = "mod@test.ro", password: str = "moderator123") -> models.User:
        return make_user(email, password, role=models.UserRole.moderator, name="Moderator")

    def user_id(token: str) -> int:
        resp = client.get("/me", headers=auth_header(token))
        assert resp.status_code == 200
        return resp.json()["id"]

    def auth_header(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    return {
        "client": client,
        "db": db_session,
        "classifier": classifier,
        "register_user": register_user,
        "login": login,
        "make_user": make_user,
        "make_admin": make_admin,
        "make_moderator": make_moderator,
        "user_id": user_id,
        "auth_header": auth_header,
    }
