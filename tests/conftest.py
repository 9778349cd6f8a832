"""
Pytest will auto-discover / import this file called 'conftest.py'.
This file defines fixtures/variables required for testing multiple layers.
"""

from typing import Generator

import pytest
from sqlalchemy import StaticPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

from src.chess.game import GameSession
from src.core.config import Settings
from src.db.memory_repository import InMemoryRoomBackend, InMemoryRoomStore
from src.db.schema import Base

# Setup an in-memory SQLite database for testing
DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autoflush=False, bind=engine, expire_on_commit=False)


@pytest.fixture
def db_session_repo() -> Generator[Session, None, None]:
    """Connection to a test database. Tables are removed at teardown to make unit tests of repository independent of each other."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session_pair() -> Generator[tuple[Session, Session], None, None]:
    """Two peers with their own sessions, connecting to the same engine / database tables."""
    Base.metadata.create_all(bind=engine)
    db_a = TestingSessionLocal()
    db_b = TestingSessionLocal()
    try:
        yield db_a, db_b
    finally:
        db_a.close()
        db_b.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def backend() -> InMemoryRoomBackend:
    return InMemoryRoomBackend()


@pytest.fixture
def store_pair(
    backend: InMemoryRoomBackend,
) -> tuple[InMemoryRoomStore, InMemoryRoomStore]:
    """Two peers connected to the same in-memory room store"""
    return InMemoryRoomStore(backend), InMemoryRoomStore(backend)


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url=DATABASE_URL, revalidate_remote_moves=False)


@pytest.fixture
def session() -> GameSession:
    """Local game, clock driven by hand (no ticker)"""
    return GameSession()
