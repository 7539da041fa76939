"""Pytest configuration and shared fixtures.

This module provides fixtures for testing the circulation engine,
including an in-memory database, a controllable clock and a dispatcher
that records pickup notices.
"""

from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest

from circulation.db.sqlite import Database
from circulation.notifications import PickupNotice
from circulation.policy import LendingPolicy
from circulation.service import CirculationEngine


START = datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingDispatcher:
    """Dispatcher that keeps every notice it receives."""

    def __init__(self):
        self.notices: list[PickupNotice] = []

    def item_ready(self, notice: PickupNotice) -> None:
        self.notices.append(notice)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def db() -> Generator[Database, None, None]:
    """Create an in-memory database for testing."""
    database = Database(":memory:", retry_delay=0)
    database.create_tables()
    yield database
    database.dispose()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def policy() -> LendingPolicy:
    return LendingPolicy()


@pytest.fixture
def engine(db, policy, clock, dispatcher) -> CirculationEngine:
    """Create a fully wired engine over the test database."""
    return CirculationEngine(db, policy=policy, clock=clock, dispatcher=dispatcher)


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def item(engine):
    """A single available item."""
    return engine.add_item("Dune", "Frank Herbert")


@pytest.fixture
def items(engine):
    """Several available items."""
    return [engine.add_item(f"Test Book {i + 1}", f"Author {i + 1}") for i in range(7)]
