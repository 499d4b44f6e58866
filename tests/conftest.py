"""Pytest configuration and fixtures."""

import asyncio
import os
import uuid
from datetime import UTC, datetime, timedelta

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("CLASSIFIER_API_KEY", "test-key")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from living_tags.config import get_settings  # noqa: E402
from living_tags.core.dependencies import get_classifier  # noqa: E402
from living_tags.core.exceptions import (  # noqa: E402
    DuplicateTagNameError,
    EntityNotFound,
    PersistenceError,
)
from living_tags.core.security import create_access_token  # noqa: E402
from living_tags.db.database import Base, get_db  # noqa: E402
from living_tags.main import app  # noqa: E402
from living_tags.services.persistence import SqlPersistence  # noqa: E402
from living_tags.services.tagging.models import (  # noqa: E402
    SOURCE_MANUAL,
    Assignment,
    TagCandidate,
    TagRecord,
    TextRecord,
)
from living_tags.services.tagging.reconciliation import guard_ai_write  # noqa: E402

# Test database - in-memory SQLite with StaticPool for connection sharing
TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


@pytest.fixture(scope="session", autouse=True)
def setup_database():
    """Create tables once for entire test session."""
    from living_tags.db import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db(setup_database):
    """Provide a transactional database session that rolls back after each test."""
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture(scope="function")
def settings():
    return get_settings()


@pytest.fixture(scope="function")
def persistence(db) -> SqlPersistence:
    return SqlPersistence(db, USER_ID)


@pytest.fixture(scope="function")
def other_persistence(db) -> SqlPersistence:
    return SqlPersistence(db, OTHER_USER_ID)


# --- Classifier double ---


class StubClassifier:
    """Classifier returning canned candidates, or raising a canned error."""

    def __init__(self, responses: dict[str, list[TagCandidate]] | None = None):
        self.responses = responses or {}
        self.default: list[TagCandidate] = []
        self.error: Exception | None = None
        self.calls: list[tuple[str, list[str]]] = []
        self.gate: asyncio.Event | None = None

    async def classify(self, text, glossary):
        self.calls.append((text, [tag.id for tag in glossary]))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.responses.get(text, self.default))


def candidate(tag_id: str, confidence: float, name: str | None = None) -> TagCandidate:
    return TagCandidate(id=tag_id, name=name or tag_id, confidence=confidence)


@pytest.fixture
def classifier() -> StubClassifier:
    return StubClassifier()


# --- Persistence double ---


class MemoryPersistence:
    """In-memory persistence collaborator with failure and latency controls.

    ``fail_on`` maps an operation name to the error its next call raises.
    ``gates`` maps an operation name to an event the call waits on first.
    """

    def __init__(self):
        self.texts: dict[str, TextRecord] = {}
        self.tags: dict[str, TagRecord] = {}
        self.assignments: dict[tuple[str, str], Assignment] = {}
        self.fail_on: dict[str, Exception] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []
        self._clock = datetime(2024, 1, 1, tzinfo=UTC)

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        gate = self.gates.get(operation)
        if gate is not None:
            await gate.wait()
        error = self.fail_on.pop(operation, None)
        if error is not None:
            raise error

    def _now(self) -> datetime:
        self._clock += timedelta(minutes=1)
        return self._clock

    # Seeding helpers (no latency, no failures)

    def seed_text(self, content: str, text_id: str | None = None) -> TextRecord:
        record = TextRecord(text_id or str(uuid.uuid4()), content, self._now())
        self.texts[record.id] = record
        return record

    def seed_tag(self, name: str, tag_id: str | None = None) -> TagRecord:
        record = TagRecord(tag_id or str(uuid.uuid4()), name, self._now())
        self.tags[record.id] = record
        return record

    def seed_assignment(self, text_id, tag_id, confidence=1.0, source=SOURCE_MANUAL):
        assignment = Assignment(text_id, tag_id, confidence, source)
        self.assignments[assignment.key] = assignment
        return assignment

    # PersistenceProtocol

    async def create_text(self, content, created_at=None):
        await self._enter("create_text")
        record = TextRecord(str(uuid.uuid4()), content.strip(), created_at or self._now())
        self.texts[record.id] = record
        return record

    async def delete_text(self, text_id):
        await self._enter("delete_text")
        if self.texts.pop(text_id, None) is None:
            raise EntityNotFound("Text not found")
        self.assignments = {k: v for k, v in self.assignments.items() if k[0] != text_id}

    async def list_texts(self):
        await self._enter("list_texts")
        return sorted(self.texts.values(), key=lambda t: t.created_at, reverse=True)

    async def create_tag(self, name):
        await self._enter("create_tag")
        name = name.strip()
        if any(t.name == name for t in self.tags.values()):
            raise DuplicateTagNameError(f'Tag "{name}" already exists')
        record = TagRecord(str(uuid.uuid4()), name, self._now())
        self.tags[record.id] = record
        return record

    async def rename_tag(self, tag_id, name):
        await self._enter("rename_tag")
        if tag_id not in self.tags:
            raise EntityNotFound("Tag not found")
        record = TagRecord(tag_id, name, self.tags[tag_id].created_at)
        self.tags[tag_id] = record
        return record

    async def delete_tag(self, tag_id):
        await self._enter("delete_tag")
        if self.tags.pop(tag_id, None) is None:
            raise EntityNotFound("Tag not found")
        self.assignments = {k: v for k, v in self.assignments.items() if k[1] != tag_id}

    async def list_tags(self):
        await self._enter("list_tags")
        return sorted(self.tags.values(), key=lambda t: t.name)

    async def list_assignments(self, text_id=None):
        await self._enter("list_assignments")
        return [a for a in self.assignments.values() if text_id is None or a.text_id == text_id]

    async def upsert_assignment(self, text_id, tag_id, confidence, source):
        await self._enter("upsert_assignment")
        if text_id not in self.texts or tag_id not in self.tags:
            raise EntityNotFound("Text or tag not found")
        if source == SOURCE_MANUAL:
            confidence = 1.0
        incoming = Assignment(text_id, tag_id, confidence, source)
        guard_ai_write(self.assignments.get(incoming.key), incoming)
        self.assignments[incoming.key] = incoming
        return incoming

    async def delete_assignment(self, text_id, tag_id):
        await self._enter("delete_assignment")
        if self.assignments.pop((text_id, tag_id), None) is None:
            raise EntityNotFound("Assignment not found")

    async def delete_assignments_where(self, text_id, source):
        await self._enter("delete_assignments_where")
        doomed = [k for k, v in self.assignments.items() if k[0] == text_id and v.source == source]
        for key in doomed:
            del self.assignments[key]
        return len(doomed)

    async def count_assignments_by_tag(self, tag_id):
        await self._enter("count_assignments_by_tag")
        return sum(1 for a in self.assignments.values() if a.tag_id == tag_id)

    async def count_assignments_by_tags(self):
        await self._enter("count_assignments_by_tags")
        counts = dict.fromkeys(self.tags, 0)
        for a in self.assignments.values():
            counts[a.tag_id] += 1
        return counts


def network_error() -> PersistenceError:
    return PersistenceError("Network unreachable")


@pytest.fixture
def memory() -> MemoryPersistence:
    return MemoryPersistence()


# --- API ---


@pytest.fixture(scope="function")
def client(db, classifier):
    """Create test client with database and classifier overrides."""

    def override_get_db():
        try:
            yield db
        finally:
            pass  # Do not close - managed by db fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_classifier] = lambda: classifier

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def user_token() -> str:
    return create_access_token(data={"sub": USER_ID, "email": "reader@test.com"})


@pytest.fixture(scope="function")
def other_token() -> str:
    return create_access_token(data={"sub": OTHER_USER_ID, "email": "other@test.com"})


@pytest.fixture(scope="function")
def user_headers(user_token) -> dict:
    """Authorization headers for the primary test user."""
    return {"Authorization": f"Bearer {user_token}"}


@pytest.fixture(scope="function")
def other_headers(other_token) -> dict:
    return {"Authorization": f"Bearer {other_token}"}
