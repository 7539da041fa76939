"""Shared result type for batch sweeps."""

from dataclasses import dataclass, field


@dataclass
class SweepResult:
    """Outcome of a batch sweep over many records."""

    processed: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.processed + self.skipped + self.failed

    @property
    def success(self) -> bool:
        return self.failed == 0 and not self.errors

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
        }
