from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.database import Base
from app.store import DocumentStore, doc_path


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def store(session_factory, clock):
    return DocumentStore(session_factory, clock=clock)


@pytest.fixture
def make_user(store):
    def _make(uid: str, gender: str, **overrides):
        profile = {
            "displayName": uid.title(),
            "photoURL": f"https://img.example/{uid}.jpg",
            "gender": gender,
            "ageRange": "25 to 30",
            "interests": ["Travel", "Cooking", "Art"],
            "lifestyle": ["Family", "Art"],
            "location": "Lagos, Lagos State, Nigeria",
            "hasCompletedOnboarding": True,
        }
        profile.update(overrides)
        store.set(doc_path("users", uid), profile)
        return profile

    return _make
