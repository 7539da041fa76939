"""Configuration management for the circulation engine.

Loads configuration from environment variables and provides defaults.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .policy import LendingPolicy

# Load .env file if present
load_dotenv()


def _default_db_path() -> str:
    return str(Path.home() / ".circulation" / "circulation.db")


@dataclass
class Config:
    """Application configuration."""

    # Database
    db_path: str

    # Lending limits
    max_active_borrows: int
    loan_days: int
    max_loan_days: int
    max_renewals: int
    daily_fine_cents: int
    pickup_window_hours: int
    queue_window_days: int

    # Transactions
    tx_max_attempts: int
    tx_retry_delay: float  # seconds

    # Consistency sync
    sync_batch_size: int

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_path = os.environ.get("CIRCULATION_DB_PATH", _default_db_path())
        if db_path != ":memory:":
            db_path = str(Path(db_path).expanduser())

        return cls(
            db_path=db_path,
            max_active_borrows=int(os.environ.get("CIRCULATION_MAX_ACTIVE_BORROWS", "5")),
            loan_days=int(os.environ.get("CIRCULATION_LOAN_DAYS", "14")),
            max_loan_days=int(os.environ.get("CIRCULATION_MAX_LOAN_DAYS", "90")),
            max_renewals=int(os.environ.get("CIRCULATION_MAX_RENEWALS", "2")),
            daily_fine_cents=int(os.environ.get("CIRCULATION_DAILY_FINE_CENTS", "25")),
            pickup_window_hours=int(
                os.environ.get("CIRCULATION_PICKUP_WINDOW_HOURS", "48")
            ),
            queue_window_days=int(os.environ.get("CIRCULATION_QUEUE_WINDOW_DAYS", "30")),
            tx_max_attempts=int(os.environ.get("CIRCULATION_TX_MAX_ATTEMPTS", "5")),
            tx_retry_delay=float(os.environ.get("CIRCULATION_TX_RETRY_DELAY", "0.05")),
            sync_batch_size=int(os.environ.get("CIRCULATION_SYNC_BATCH_SIZE", "200")),
        )

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.max_active_borrows < 1:
            errors.append("CIRCULATION_MAX_ACTIVE_BORROWS must be at least 1")
        if self.loan_days < 1:
            errors.append("CIRCULATION_LOAN_DAYS must be at least 1")
        if self.max_loan_days < self.loan_days:
            errors.append("CIRCULATION_MAX_LOAN_DAYS must not be below CIRCULATION_LOAN_DAYS")
        if self.max_renewals < 0:
            errors.append("CIRCULATION_MAX_RENEWALS must not be negative")
        if self.daily_fine_cents < 0:
            errors.append("CIRCULATION_DAILY_FINE_CENTS must not be negative")
        if self.pickup_window_hours < 1:
            errors.append("CIRCULATION_PICKUP_WINDOW_HOURS must be at least 1")
        if self.queue_window_days < 1:
            errors.append("CIRCULATION_QUEUE_WINDOW_DAYS must be at least 1")
        if self.tx_max_attempts < 1:
            errors.append("CIRCULATION_TX_MAX_ATTEMPTS must be at least 1")
        if self.sync_batch_size < 1:
            errors.append("CIRCULATION_SYNC_BATCH_SIZE must be at least 1")

        # Check database directory is writable
        if self.db_path != ":memory:":
            parent = Path(self.db_path).parent
            if not parent.exists():
                try:
                    parent.mkdir(parents=True, exist_ok=True)
                except PermissionError:
                    errors.append(f"Cannot create database directory: {parent}")

        return errors

    def policy(self) -> LendingPolicy:
        """Build the lending policy described by this configuration."""
        return LendingPolicy(
            max_active_borrows=self.max_active_borrows,
            default_loan_days=self.loan_days,
            max_loan_days=self.max_loan_days,
            max_renewals=self.max_renewals,
            daily_fine_cents=self.daily_fine_cents,
            pickup_window_hours=self.pickup_window_hours,
            queue_window_days=self.queue_window_days,
        )
