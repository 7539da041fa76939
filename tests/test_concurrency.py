"""Concurrent writers against a shared file database."""

import threading

import pytest

from circulation.db.sqlite import Database
from circulation.errors import BorrowLimitExceeded, ItemUnavailable, TransientConflict
from circulation.policy import LendingPolicy
from circulation.service import CirculationEngine


@pytest.fixture
def shared_engine(tmp_path, clock, dispatcher):
    """Engine over a file database so threads get separate connections."""
    database = Database(str(tmp_path / "shared.db"), max_attempts=20, retry_delay=0.001)
    database.create_tables()
    yield CirculationEngine(
        database,
        policy=LendingPolicy(max_active_borrows=5),
        clock=clock,
        dispatcher=dispatcher,
    )
    database.dispose()


def run_together(calls):
    """Start every call at once and collect (result, error) pairs."""
    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)

    def worker(index, fn):
        barrier.wait()
        try:
            outcomes[index] = (fn(), None)
        except Exception as e:
            outcomes[index] = (None, e)

    threads = [threading.Thread(target=worker, args=(i, fn)) for i, fn in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


class TestConcurrentBorrows:
    """Racing borrows never double-lend or overshoot a limit."""

    def test_one_winner_per_item(self, shared_engine):
        item = shared_engine.add_item("Dune", "Frank Herbert")

        outcomes = run_together(
            [lambda p=f"p{i}": shared_engine.borrow_book(p, item.id) for i in range(8)]
        )

        winners = [result for result, error in outcomes if error is None]
        losers = [error for result, error in outcomes if error is not None]
        assert len(winners) == 1
        assert all(isinstance(e, (ItemUnavailable, TransientConflict)) for e in losers)

        stored = shared_engine.get_item(item.id)
        assert stored.available is False
        assert stored.held_by == winners[0].patron_id

    def test_limit_holds_under_contention(self, shared_engine):
        items = [shared_engine.add_item(f"Book {i}", "Author") for i in range(8)]
        for it in items[:4]:
            shared_engine.borrow_book("p1", it.id)

        outcomes = run_together(
            [lambda i=it: shared_engine.borrow_book("p1", i.id) for it in items[4:]]
        )

        winners = [result for result, error in outcomes if error is None]
        losers = [error for result, error in outcomes if error is not None]
        assert len(winners) == 1
        assert all(isinstance(e, (BorrowLimitExceeded, TransientConflict)) for e in losers)
        assert shared_engine.ledger.active_borrow_count("p1") == 5
        assert len(shared_engine.active_borrows_for_patron("p1")) == 5

    def test_return_races_with_renew(self, shared_engine):
        item = shared_engine.add_item("Dune", "Frank Herbert")
        borrow = shared_engine.borrow_book("p1", item.id)

        outcomes = run_together(
            [
                lambda: shared_engine.return_book(borrow.id),
                lambda: shared_engine.renew_borrow(borrow.id),
            ]
        )

        assert outcomes[0][1] is None
        stored = shared_engine.ledger.get_borrow(borrow.id)
        assert stored.status.value == "returned"
        assert shared_engine.get_item(item.id).available is True
        assert shared_engine.ledger.active_borrow_count("p1") == 0
