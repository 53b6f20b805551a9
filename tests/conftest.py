import os

# Must be set before funnel_tracker.core.config builds its settings
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import funnel_tracker.models  # noqa: F401
from funnel_tracker.core.config import settings
from funnel_tracker.db.session import Base, get_db
from funnel_tracker.main import app
from funnel_tracker.models.tracking_event import TrackingEvent
from funnel_tracker.services.consent import ConsentContext


@pytest.fixture()
def db():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def default_switches(monkeypatch):
    monkeypatch.setattr(settings, "COOKIE_CONSENT_ENABLED", True)
    monkeypatch.setattr(settings, "UTM_TRACKING_ENABLED", True)
    monkeypatch.setattr(settings, "ENABLE_IP_TRACKING", True)
    monkeypatch.setattr(settings, "ENABLE_USER_AGENT_TRACKING", True)


@pytest.fixture()
def accepted_consent():
    return ConsentContext(status="accepted", categories={"necessary": True, "analytics": True})


@pytest.fixture()
def add_event(db):
    """Insert a tracking event directly, bypassing the tracking checks."""

    def _add(step, session_id, created_at=None, **fields):
        event = TrackingEvent(
            funnel_id=step.funnel_id,
            step_id=step.id,
            session_id=session_id,
            event_type=fields.pop("event_type", "page_view" if step.step_type == "page" else "form_step"),
            page_id=step.page_id,
            form_id=step.form_id,
            created_at=created_at or datetime.now().replace(microsecond=0),
            **fields,
        )
        db.add(event)
        db.commit()
        return event

    return _add
