"""Sequential, continue-on-error processing of many targets."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, TypeVar

from .errors import BatchFailed

_LOGGER = logging.getLogger("snag.batch")

T = TypeVar("T")


@dataclass
class BatchResult:
    total: int
    timestamp: datetime
    succeeded: int = 0
    failures: list[tuple[str, Exception]] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.succeeded == self.total

    def raise_for_failures(self) -> None:
        if self.ok:
            return
        raise BatchFailed(
            f"Batch completed with {self.failed} failure(s) out of {self.total}",
            "Re-run the failed targets with --verbose for details",
            {"failed": [name for name, _ in self.failures]},
        )


@dataclass
class BatchJob(Generic[T]):
    targets: Sequence[T]
    operation: Callable[[T, datetime], None]
    describe: Callable[[T], str] = str
    timestamp: datetime = field(default_factory=datetime.now)

    def run(self) -> BatchResult:
        result = BatchResult(total=len(self.targets), timestamp=self.timestamp)
        total = result.total
        for position, target in enumerate(self.targets, start=1):
            label = self.describe(target)
            _LOGGER.info("[%d/%d] Processing: %s", position, total, label)
            try:
                self.operation(target, self.timestamp)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.error("[%d/%d] Failed: %s", position, total, exc)
                result.failures.append((label, exc))
                continue
            result.succeeded += 1

        _LOGGER.info("Batch complete: %d succeeded, %d failed", result.succeeded, result.failed)
        return result


def run_batch(
    targets: Sequence[T],
    operation: Callable[[T, datetime], None],
    *,
    timestamp: datetime | None = None,
    describe: Callable[[T], str] = str,
) -> BatchResult:
    """Run ``operation(target, epoch)`` for every target, in order.

    The naming epoch is fixed once, before the first target runs.
    """
    job = BatchJob(targets=list(targets), operation=operation, describe=describe)
    if timestamp is not None:
        job.timestamp = timestamp
    return job.run()


__all__ = ["BatchJob", "BatchResult", "run_batch"]
