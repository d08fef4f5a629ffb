"""Test configuration."""
import os
from datetime import UTC, datetime
from typing import Generator, List

import pytest

# Set test environment before any imports
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

# Import after environment setup
from sqlalchemy.orm import Session

from supercards.models.base import Base, SessionLocal, engine, init_db
from supercards.models.cards import ProgressState, VocabularyEntry
from supercards.services.memory_model import MemoryModel
from supercards.services.random_source import SeededRandomSource
from supercards.tests.factories import make_wordlist

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    init_db()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def wordlist() -> List[VocabularyEntry]:
    """A ten entry wordlist."""
    return make_wordlist(10)


@pytest.fixture
def state() -> ProgressState:
    return ProgressState()


@pytest.fixture
def memory_model() -> MemoryModel:
    return MemoryModel.from_settings()


@pytest.fixture
def rng() -> SeededRandomSource:
    return SeededRandomSource("supercards-tests")
