"""SQLite database operations.

Handles database connection, session management and the bounded
optimistic-retry transaction loop used by every mutating operation.
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Generator, Optional, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from ..errors import TransientConflict
from .models import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(exc: Exception) -> bool:
    """Check whether an exception means a concurrent writer won the race.

    Covers version-counter mismatches, partial unique index violations and
    SQLite lock contention.
    """
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, (IntegrityError, OperationalError)):
        message = str(exc.orig if exc.orig is not None else exc).lower()
        if isinstance(exc, IntegrityError):
            return "unique" in message
        return "locked" in message or "busy" in message
    return False


class Database:
    """Database connection and transaction manager."""

    def __init__(
        self,
        db_path: str,
        max_attempts: int = 5,
        retry_delay: float = 0.05,
        busy_timeout: float = 5.0,
    ):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
            max_attempts: Attempts per transaction before TransientConflict
            retry_delay: Base backoff delay in seconds (doubles per attempt)
            busy_timeout: Seconds SQLite waits on a locked database
        """
        self.db_path = Path(db_path)
        self._is_memory = str(db_path) == ":memory:"
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

        if not self._is_memory:
            self._ensure_directory()

        # For in-memory databases, use StaticPool to reuse the same connection
        # so all sessions share the same in-memory database
        if self._is_memory:
            self.engine = create_engine(
                "sqlite:///:memory:",
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=False,
                connect_args={"check_same_thread": False, "timeout": busy_timeout},
            )
            event.listen(self.engine, "connect", self._configure_connection)

        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)

    @staticmethod
    def _configure_connection(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def create_tables(self) -> None:
        """Create all database tables."""
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        """Drop all database tables. Use with caution!"""
        Base.metadata.drop_all(self.engine)

    def dispose(self) -> None:
        """Close pooled connections."""
        self.engine.dispose()

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a database session context manager."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def run_in_transaction(
        self,
        work: Callable[[Session], T],
        label: str = "transaction",
        max_attempts: Optional[int] = None,
    ) -> T:
        """Run ``work`` in its own transaction, retrying on lost races.

        ``work`` must re-read everything it depends on, since each attempt
        starts from a fresh session. Business errors raised by ``work``
        roll back and propagate immediately.

        Args:
            work: Callable receiving the session; its return value is passed through
            label: Name used in log messages
            max_attempts: Override for the configured attempt budget

        Returns:
            Whatever ``work`` returned on the successful attempt

        Raises:
            TransientConflict: If every attempt lost a race
        """
        attempts = max_attempts or self.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                with self.get_session() as session:
                    return work(session)
            except (StaleDataError, IntegrityError, OperationalError) as e:
                if not is_retryable(e):
                    raise
                logger.debug(
                    "%s lost a race on attempt %d/%d: %s", label, attempt, attempts, e
                )
                if attempt < attempts and self.retry_delay > 0:
                    time.sleep(self.retry_delay * (2 ** (attempt - 1)))

        logger.warning("%s gave up after %d attempts", label, attempts)
        raise TransientConflict(
            f"{label} could not complete due to concurrent updates", attempts=attempts
        )
