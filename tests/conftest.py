"""Shared fixtures: a throwaway SQLite database per test, seeded users and a
group, an API client wired to that database, and a recording email sender."""

import base64
import os
from datetime import datetime, timedelta

# Settings are read at import time, so they must be in place before bluemoon loads
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("ENCRYPTION_KEY", base64.b64encode(b"k" * 32).decode())
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")
os.environ.setdefault("RESEND_API_KEY", "re_test_key")

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.orm import sessionmaker

from bluemoon import models_calendar  # noqa: F401
from bluemoon.crypto import CredentialCipher
from bluemoon.database import Base, build_engine, get_db
from bluemoon.domain.calendar.router import get_vault
from bluemoon.domain.calendar.vault import CredentialVault
from bluemoon.main import app
from bluemoon.models import Group, User
from bluemoon.config import JWT_ALGORITHM, SECRET_KEY


@pytest.fixture
def engine(tmp_path):
    """File-backed so separate sessions (and threads) see each other's commits"""
    test_engine = build_engine(f"sqlite:///{tmp_path / 'bluemoon-test.db'}")
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def cipher():
    return CredentialCipher(os.urandom(32))


@pytest.fixture
def owner(db):
    user = User(email="organizer@example.com", name="Olivia Organizer")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def other_user(db):
    user = User(email="someone.else@example.com", name="Sam Else")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def group(db, owner):
    g = Group(name="Book Club", created_by=owner.id)
    db.add(g)
    db.commit()
    db.refresh(g)
    return g


def mint_session_token(user_id: int, expires_in: timedelta = timedelta(minutes=60)) -> str:
    """Signs a session the way the sign-in service does"""
    claims = {"sub": str(user_id), "exp": datetime.utcnow() + expires_in}
    return jwt.encode(claims, SECRET_KEY, algorithm=JWT_ALGORITHM)


def _bearer(user: User, expires_in: timedelta = timedelta(minutes=60)) -> dict:
    return {"Authorization": f"Bearer {mint_session_token(user.id, expires_in)}"}


@pytest.fixture
def headers_for():
    return _bearer


@pytest.fixture
def auth_headers(owner):
    return _bearer(owner)


@pytest.fixture
def client(session_factory, cipher):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def override_get_vault(db=Depends(get_db)):
        return CredentialVault(db, cipher)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_vault] = override_get_vault
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


class EmailRecorder:
    """Stands in for the Resend sender; can be told to fail every send"""

    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    async def __call__(self, to, subject, mjml_content, from_address=None):
        if self.fail:
            raise RuntimeError("email provider unavailable")
        self.sent.append({"to": to, "subject": subject, "mjml": mjml_content})
        return {"id": f"email-{len(self.sent)}"}

    def to(self, address: str) -> list[dict]:
        return [m for m in self.sent if m["to"] == address]


@pytest.fixture(autouse=True)
def emails(monkeypatch):
    recorder = EmailRecorder()
    monkeypatch.setattr("bluemoon.email_service.send_email", recorder)
    return recorder
