"""Tests for SQLite database operations."""

import pytest
from sqlalchemy import inspect, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from circulation.db.models import Borrow, Item, Patron, Reservation
from circulation.db.sqlite import Database, is_retryable
from circulation.errors import NotFoundError, TransientConflict


class TestDatabaseCreation:
    """Tests for database initialization."""

    def test_database_creates_tables(self, db: Database):
        """Test that database creates all required tables."""
        tables = set(inspect(db.engine).get_table_names())
        assert {"items", "patrons", "borrows", "reservations"} <= tables

    def test_partial_unique_indexes(self, db: Database):
        """Test that the active-row unique indexes exist."""
        borrow_indexes = {ix["name"] for ix in inspect(db.engine).get_indexes("borrows")}
        reservation_indexes = {
            ix["name"] for ix in inspect(db.engine).get_indexes("reservations")
        }
        assert "uq_borrows_active_item" in borrow_indexes
        assert "uq_reservations_active_patron_item" in reservation_indexes

    def test_database_path_created(self, tmp_path):
        """Test that a file database creates its parent directory."""
        database = Database(str(tmp_path / "nested" / "circulation.db"))
        database.create_tables()

        assert database.db_path.exists()
        database.dispose()


class TestSession:
    """Tests for get_session."""

    def test_commits_on_success(self, db: Database):
        with db.get_session() as session:
            session.add(Item(id="i1", title="T", author="A", available=True))

        with db.get_session() as session:
            assert session.get(Item, "i1") is not None

    def test_rolls_back_on_error(self, db: Database):
        with pytest.raises(RuntimeError):
            with db.get_session() as session:
                session.add(Item(id="i1", title="T", author="A", available=True))
                session.flush()
                raise RuntimeError("abort")

        with db.get_session() as session:
            assert session.get(Item, "i1") is None

    def test_version_counter_starts_and_bumps(self, db: Database):
        with db.get_session() as session:
            session.add(Patron(id="p1", active_borrow_count=0))

        with db.get_session() as session:
            patron = session.get(Patron, "p1")
            assert patron.version == 1
            patron.active_borrow_count = 1

        with db.get_session() as session:
            assert session.get(Patron, "p1").version == 2


class TestOptimisticConcurrency:
    """Stale writes are detected instead of overwriting."""

    def test_stale_update_raises(self, tmp_path):
        database = Database(str(tmp_path / "occ.db"))
        database.create_tables()
        with database.get_session() as session:
            session.add(Patron(id="p1", active_borrow_count=0))

        first = database.SessionLocal()
        second = database.SessionLocal()
        try:
            a = first.get(Patron, "p1")
            b = second.get(Patron, "p1")
            a.active_borrow_count = 1
            first.commit()

            b.active_borrow_count = 5
            with pytest.raises(StaleDataError):
                second.commit()
        finally:
            first.close()
            second.close()
            database.dispose()

    def test_second_active_borrow_rejected(self, db: Database):
        row = dict(
            patron_id="p1",
            item_id="i1",
            item_title="T",
            item_author="A",
            borrowed_at="2025-03-01T10:00:00.000000+00:00",
            due_date="2025-03-15T10:00:00.000000+00:00",
            status="active",
        )
        with db.get_session() as session:
            session.add(Borrow(**row))

        with pytest.raises(IntegrityError):
            with db.get_session() as session:
                session.add(Borrow(**{**row, "patron_id": "p2"}))

    def test_returned_borrows_do_not_collide(self, db: Database):
        row = dict(
            item_id="i1",
            item_title="T",
            item_author="A",
            borrowed_at="2025-03-01T10:00:00.000000+00:00",
            due_date="2025-03-15T10:00:00.000000+00:00",
            returned_at="2025-03-02T10:00:00.000000+00:00",
            status="returned",
        )
        with db.get_session() as session:
            session.add(Borrow(patron_id="p1", **row))
            session.add(Borrow(patron_id="p2", **row))

        with db.get_session() as session:
            assert len(session.execute(select(Borrow)).scalars().all()) == 2

    def test_duplicate_active_reservation_rejected(self, db: Database):
        row = dict(
            patron_id="p1",
            item_id="i1",
            item_title="T",
            item_author="A",
            reserved_at="2025-03-01T10:00:00.000000+00:00",
            expires_at="2025-03-31T10:00:00.000000+00:00",
            status="active",
        )
        with db.get_session() as session:
            session.add(Reservation(**row))

        with pytest.raises(IntegrityError):
            with db.get_session() as session:
                session.add(Reservation(**row))


class TestRunInTransaction:
    """Tests for the bounded retry loop."""

    def test_returns_work_result(self, db: Database):
        assert db.run_in_transaction(lambda session: 42) == 42

    def test_retries_then_succeeds(self, db: Database):
        calls = []

        def work(session):
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("lost race")
            session.add(Item(id="i1", title="T", author="A", available=True))
            return "ok"

        assert db.run_in_transaction(work) == "ok"
        assert len(calls) == 3
        with db.get_session() as session:
            assert session.get(Item, "i1") is not None

    def test_gives_up_with_transient_conflict(self, db: Database):
        calls = []

        def work(session):
            calls.append(1)
            raise StaleDataError("lost race")

        with pytest.raises(TransientConflict) as exc:
            db.run_in_transaction(work, max_attempts=3)

        assert len(calls) == 3
        assert exc.value.attempts == 3

    def test_failed_attempt_rolls_back(self, db: Database):
        calls = []

        def work(session):
            calls.append(1)
            session.add(Item(id=f"i{len(calls)}", title="T", author="A", available=True))
            session.flush()
            if len(calls) == 1:
                raise StaleDataError("lost race")

        db.run_in_transaction(work)

        with db.get_session() as session:
            assert session.get(Item, "i1") is None
            assert session.get(Item, "i2") is not None

    def test_business_errors_propagate_immediately(self, db: Database):
        calls = []

        def work(session):
            calls.append(1)
            raise NotFoundError("nope")

        with pytest.raises(NotFoundError):
            db.run_in_transaction(work)
        assert len(calls) == 1


class TestIsRetryable:
    """Tests for is_retryable."""

    def test_stale_data(self):
        assert is_retryable(StaleDataError("x"))

    def test_unique_violation(self):
        error = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: borrows.item_id"))
        assert is_retryable(error)

    def test_not_null_violation(self):
        error = IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: items.title"))
        assert not is_retryable(error)

    def test_locked_database(self):
        error = OperationalError("UPDATE", {}, Exception("database is locked"))
        assert is_retryable(error)

    def test_missing_table(self):
        error = OperationalError("SELECT", {}, Exception("no such table: items"))
        assert not is_retryable(error)

    def test_other_errors(self):
        assert not is_retryable(ValueError("x"))
