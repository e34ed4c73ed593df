import os

# Settings are read at import time; point them at throwaway values first.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["COOKIE_SECURE"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from localspotlight.config import settings
from localspotlight.db import get_db
from localspotlight.main import app
from localspotlight.models import Base
from localspotlight.tests.factories import TEST_JWT_SECRET, TEST_TOKEN_SECRET


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    monkeypatch.setattr(settings, "supabase_jwt_secret", TEST_JWT_SECRET)
    monkeypatch.setattr(settings, "google_refresh_token_secret", TEST_TOKEN_SECRET)
    monkeypatch.setattr(settings, "publish_posts_cron_secret", "publish-secret")
    monkeypatch.setattr(settings, "automation_cron_secret", "automation-secret")
    monkeypatch.setattr(settings, "cron_secret", "cron-secret")
    monkeypatch.setattr(settings, "supabase_anon_key", "anon-key")
    return settings


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with_client = TestClient(app, follow_redirects=False)
    try:
        yield with_client
    finally:
        app.dependency_overrides.clear()

