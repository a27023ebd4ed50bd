# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("SWEEPER_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from chorus_messaging.api.v1.dependencies import get_attachment_store, get_messaging_service
from chorus_messaging.core.security import create_access_token
from chorus_messaging.db.session import Base, build_engine
from chorus_messaging.db.session import get_db as app_get_session
from chorus_messaging.main import app as fastapi_app
from chorus_messaging.models import PrivacySetting
from chorus_messaging.services.attachments import LocalAttachmentStore
from chorus_messaging.services.identity import SqlIdentityProvider
from chorus_messaging.services.messaging import MessagingService
from chorus_messaging.services.notifications import NotificationEvent

ALICE = "alice"
BOB = "bob"
CAROL = "carol"
DAVE = "dave"


class FakeClock:
    """Deterministic, manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class RecordingDispatcher:
    """Notification dispatcher that keeps every event for assertions."""

    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    def dispatch(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def for_recipient(self, user_id: str) -> list[NotificationEvent]:
        return [event for event in self.events if event.recipient_id == user_id]


@pytest.fixture()
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    # A file database, so sessions on other threads see committed writes.
    engine = build_engine(f"sqlite:///{tmp_path / 'messaging.db'}")
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def notifier() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture()
def identity() -> SqlIdentityProvider:
    return SqlIdentityProvider()


@pytest.fixture()
def service(
    identity: SqlIdentityProvider, notifier: RecordingDispatcher, clock: FakeClock
) -> MessagingService:
    return MessagingService(
        identity,
        notifier,
        clock=clock,
        max_retries=2,
        retry_backoff_seconds=0,
        sleep=lambda _seconds: None,
    )


@pytest.fixture()
def set_privacy(
    db_session: Session, identity: SqlIdentityProvider
) -> Callable[[str, PrivacySetting], None]:
    def _set(user_id: str, setting: PrivacySetting) -> None:
        identity.set_privacy(db_session, user_id, setting)
        db_session.commit()

    return _set


@pytest.fixture()
def follow(db_session: Session, identity: SqlIdentityProvider) -> Callable[[str, str], None]:
    def _follow(follower_id: str, followee_id: str) -> None:
        identity.follow(db_session, follower_id, followee_id)
        db_session.commit()

    return _follow


@pytest.fixture()
def block(db_session: Session, identity: SqlIdentityProvider) -> Callable[[str, str], None]:
    def _block(blocker_id: str, blocked_id: str) -> None:
        identity.block(db_session, blocker_id, blocked_id)
        db_session.commit()

    return _block


@pytest.fixture()
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def attachment_store(tmp_path: Path) -> LocalAttachmentStore:
    return LocalAttachmentStore(tmp_path / "attachments", base_url="/files", max_bytes=1024)


@pytest.fixture()
def client(
    app: FastAPI,
    db_session: Session,
    service: MessagingService,
    attachment_store: LocalAttachmentStore,
) -> Iterator[TestClient]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_messaging_service] = lambda: service
    app.dependency_overrides[get_attachment_store] = lambda: attachment_store
    try:
        with TestClient(app, base_url="http://test") as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


def auth_headers(user_id: str) -> dict[str, str]:
    """Return authorization headers for ``user_id``."""
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}
