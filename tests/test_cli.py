"""Tests for the CLI interface."""

import re

import pytest
from typer.testing import CliRunner

from circulation.cli import app


@pytest.fixture(autouse=True)
def setup_test_db(tmp_path, monkeypatch):
    """Point every command at a fresh database file."""
    monkeypatch.setenv("CIRCULATION_DB_PATH", str(tmp_path / "circulation.db"))
    monkeypatch.setenv("CIRCULATION_TX_RETRY_DELAY", "0")


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def dune(runner):
    """Catalog item with a known id."""
    result = runner.invoke(
        app, ["items", "add", "--title", "Dune", "--author", "Frank Herbert", "--id", "dune"]
    )
    assert result.exit_code == 0
    return "dune"


def borrow_id_from(output: str) -> str:
    match = re.search(r"Borrow ID: (\S+)", output)
    assert match, output
    return match.group(1)


class TestCLIBasics:
    """Tests for basic CLI functionality."""

    def test_help(self, runner: CliRunner):
        """Test that help command works."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "circulation" in result.stdout.lower()

    def test_version(self, runner: CliRunner):
        """Test version command."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.stdout

    def test_invalid_config(self, runner: CliRunner, monkeypatch):
        """Test that bad configuration is reported before any command runs."""
        monkeypatch.setenv("CIRCULATION_MAX_ACTIVE_BORROWS", "0")
        result = runner.invoke(app, ["items", "list"])
        assert result.exit_code == 1
        assert "CIRCULATION_MAX_ACTIVE_BORROWS" in result.stdout


class TestItemsCommands:
    """Tests for the items command group."""

    def test_list_empty(self, runner: CliRunner):
        result = runner.invoke(app, ["items", "list"])
        assert result.exit_code == 0
        assert "No items found" in result.stdout

    def test_add_and_list(self, runner: CliRunner, dune):
        result = runner.invoke(app, ["items", "list"])
        assert result.exit_code == 0
        assert "Dune" in result.stdout
        assert "available" in result.stdout

    def test_edit(self, runner: CliRunner, dune):
        result = runner.invoke(app, ["items", "edit", dune, "--title", "Dune Messiah"])
        assert result.exit_code == 0
        assert "Updated: Dune Messiah" in result.stdout

    def test_edit_nothing(self, runner: CliRunner, dune):
        result = runner.invoke(app, ["items", "edit", dune])
        assert result.exit_code == 1
        assert "Nothing to change" in result.stdout

    def test_edit_missing(self, runner: CliRunner):
        result = runner.invoke(app, ["items", "edit", "nope", "--title", "X"])
        assert result.exit_code == 1
        assert "not found" in result.stdout


class TestCirculationCommands:
    """Tests for borrow, return, renew, reserve and cancel."""

    def test_borrow(self, runner: CliRunner, dune):
        result = runner.invoke(app, ["borrow", "p1", dune])
        assert result.exit_code == 0
        assert "Borrowed: Dune" in result.stdout
        assert "Due:" in result.stdout

    def test_borrow_taken_item(self, runner: CliRunner, dune):
        runner.invoke(app, ["borrow", "p1", dune])
        result = runner.invoke(app, ["borrow", "p2", dune])
        assert result.exit_code == 1
        assert "already checked out" in result.stdout

    def test_borrow_too_long(self, runner: CliRunner, dune):
        result = runner.invoke(app, ["borrow", "p1", dune, "--days", "365"])
        assert result.exit_code == 1
        assert "Invalid duration_days" in result.stdout

    def test_return(self, runner: CliRunner, dune):
        borrowed = runner.invoke(app, ["borrow", "p1", dune])
        result = runner.invoke(app, ["return", borrow_id_from(borrowed.stdout)])
        assert result.exit_code == 0
        assert "Returned: Dune" in result.stdout

    def test_renew(self, runner: CliRunner, dune):
        borrowed = runner.invoke(app, ["borrow", "p1", dune])
        result = runner.invoke(app, ["renew", borrow_id_from(borrowed.stdout), "--days", "7"])
        assert result.exit_code == 0
        assert "New due date" in result.stdout

    def test_renew_with_queue(self, runner: CliRunner, dune):
        borrowed = runner.invoke(app, ["borrow", "p1", dune])
        runner.invoke(app, ["reserve", "p2", dune])
        result = runner.invoke(app, ["renew", borrow_id_from(borrowed.stdout)])
        assert result.exit_code == 1
        assert "ReservationPending" in result.stdout

    def test_reserve_shows_position(self, runner: CliRunner, dune):
        runner.invoke(app, ["borrow", "p1", dune])
        result = runner.invoke(app, ["reserve", "p2", dune])
        assert result.exit_code == 0
        assert "Queue position: 1" in result.stdout

    def test_reserve_available(self, runner: CliRunner, dune):
        result = runner.invoke(app, ["reserve", "p2", dune])
        assert result.exit_code == 1
        assert "ItemAvailable" in result.stdout

    def test_cancel(self, runner: CliRunner, dune):
        runner.invoke(app, ["borrow", "p1", dune])
        reserved = runner.invoke(app, ["reserve", "p2", dune])
        reservation_id = re.search(r"Reservation ID: (\S+)", reserved.stdout).group(1)

        result = runner.invoke(app, ["cancel", reservation_id])
        assert result.exit_code == 0
        assert "Reservation cancelled" in result.stdout


class TestViewCommands:
    """Tests for loans, history and queue."""

    def test_loans_empty(self, runner: CliRunner):
        result = runner.invoke(app, ["loans", "p1"])
        assert result.exit_code == 0
        assert "No active borrows" in result.stdout

    def test_loans(self, runner: CliRunner, dune):
        runner.invoke(app, ["borrow", "p1", dune])
        result = runner.invoke(app, ["loans", "p1"])
        assert result.exit_code == 0
        assert "Dune" in result.stdout

    def test_history(self, runner: CliRunner, dune):
        borrowed = runner.invoke(app, ["borrow", "p1", dune])
        runner.invoke(app, ["return", borrow_id_from(borrowed.stdout)])
        result = runner.invoke(app, ["history", "p1"])
        assert result.exit_code == 0
        assert "History for p1" in result.stdout
        assert "Dune" in result.stdout

    def test_queue(self, runner: CliRunner, dune):
        runner.invoke(app, ["borrow", "p1", dune])
        runner.invoke(app, ["reserve", "p2", dune])
        result = runner.invoke(app, ["queue", dune])
        assert result.exit_code == 0
        assert "p2" in result.stdout

    def test_queue_empty(self, runner: CliRunner, dune):
        result = runner.invoke(app, ["queue", dune])
        assert result.exit_code == 0
        assert "Nobody is waiting" in result.stdout


class TestSweepCommands:
    """Tests for overdue, expire and reconcile."""

    def test_overdue(self, runner: CliRunner, dune):
        runner.invoke(app, ["borrow", "p1", dune, "--days", "1"])
        result = runner.invoke(app, ["overdue", "--as-of", "2999-01-01"])
        assert result.exit_code == 0
        assert "Processed: 1" in result.stdout

    def test_overdue_bad_date(self, runner: CliRunner):
        result = runner.invoke(app, ["overdue", "--as-of", "yesterday"])
        assert result.exit_code == 1
        assert "Invalid date" in result.stdout

    def test_expire(self, runner: CliRunner, dune):
        runner.invoke(app, ["borrow", "p1", dune])
        runner.invoke(app, ["reserve", "p2", dune])
        result = runner.invoke(app, ["expire", "--as-of", "2999-01-01"])
        assert result.exit_code == 0
        assert "Expired: 1" in result.stdout

    def test_reconcile(self, runner: CliRunner, dune):
        runner.invoke(app, ["borrow", "p1", dune])
        result = runner.invoke(app, ["reconcile"])
        assert result.exit_code == 0
        assert "Items: 1" in result.stdout
