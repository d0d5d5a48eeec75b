import pytest
import os
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CRON_CURRENT_SIGNING_KEY", "test-current-signing-key")
os.environ.setdefault("CRON_NEXT_SIGNING_KEY", "test-next-signing-key")
os.environ.setdefault("EMAIL_PROVIDER_DEFAULT", "stub")

import app.models  # noqa: F401
from app.core.config import settings
from app.core.deps import get_db
from app.db.base import Base
from app.main import app
from app.services import email_service

from factories import RecordingEmailProvider


@pytest.fixture()
def test_context():
    saved_keys = (settings.cron_current_signing_key, settings.cron_next_signing_key)
    original_public_url = settings.cron_public_url
    settings.cron_current_signing_key = "test-current-signing-key"
    settings.cron_next_signing_key = "test-next-signing-key"
    settings.cron_public_url = None

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
    settings.cron_current_signing_key, settings.cron_next_signing_key = saved_keys
    settings.cron_public_url = original_public_url


@pytest.fixture()
def db_session(test_context):
    _, session_local = test_context
    db = session_local()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def email_outbox(monkeypatch):
    provider = RecordingEmailProvider()
    monkeypatch.setitem(email_service._EMAIL_PROVIDERS, "stub", provider)
    return provider
