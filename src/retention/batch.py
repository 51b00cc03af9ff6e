"""
Bounded-parallel batch execution with per-unit failure isolation.

Every sweep in the engine (risk recalculation, alert inserts, outcome
measurement) walks a list of keys in fixed-size chunks, runs each chunk
on a thread pool, pauses between chunks to bound store load, and gathers
every unit's result. A failing unit is logged and recorded; it never
aborts its batch or the sweep.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable, Iterable, Sequence

logger = logging.getLogger(__name__)


@dataclass
class UnitResult:
    """Outcome of processing a single unit of a batch."""
    key: Hashable
    success: bool
    value: Any = None
    error: str | None = None


@dataclass
class BatchReport:
    """All unit results of a batched run, in input order."""
    results: list[UnitResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def successes(self) -> list[UnitResult]:
        return [r for r in self.results if r.success]

    @property
    def failures(self) -> list[UnitResult]:
        return [r for r in self.results if not r.success]

    @property
    def errors(self) -> list[str]:
        return [f"{r.key}: {r.error}" for r in self.failures]


def chunked(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    """Yield consecutive chunks of at most `size` items."""
    if size < 1:
        raise ValueError(f"Batch size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _run_unit(fn: Callable[[Any], Any], key: Any) -> UnitResult:
    try:
        return UnitResult(key=key, success=True, value=fn(key))
    except Exception as e:
        logger.error(f"Unit {key} failed: {e}")
        return UnitResult(key=key, success=False, error=str(e))


def run_in_batches(
    items: Sequence[Any],
    fn: Callable[[Any], Any],
    batch_size: int = 10,
    pause_seconds: float = 0.0,
    max_workers: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> BatchReport:
    """Run `fn` over `items` in chunks with bounded parallelism.

    Args:
        items: Unit keys to process.
        fn: Callable applied to each key. Its return value is kept on the
            unit result; any exception marks the unit failed.
        batch_size: Units per chunk.
        pause_seconds: Pause between chunks (not after the last).
        max_workers: Thread pool size per chunk. Defaults to `batch_size`.
        sleep: Sleep function, injectable for tests.

    Returns:
        BatchReport with one UnitResult per item, in input order.
    """
    items = list(items)
    report = BatchReport()
    if not items:
        return report

    workers = max(1, min(max_workers or batch_size, batch_size))
    chunks = list(chunked(items, batch_size))

    with ThreadPoolExecutor(max_workers=workers) as executor:
        for index, chunk in enumerate(chunks):
            futures = {executor.submit(_run_unit, fn, key): pos for pos, key in enumerate(chunk)}
            chunk_results: list[UnitResult | None] = [None] * len(chunk)
            for future in as_completed(futures):
                chunk_results[futures[future]] = future.result()
            report.results.extend(r for r in chunk_results if r is not None)

            logger.debug(
                f"Batch {index + 1}/{len(chunks)}: "
                f"{sum(1 for r in chunk_results if r and r.success)}/{len(chunk)} succeeded"
            )
            if pause_seconds > 0 and index < len(chunks) - 1:
                sleep(pause_seconds)

    return report


def run_sequentially(items: Iterable[Any], fn: Callable[[Any], Any]) -> BatchReport:
    """Run `fn` over `items` one at a time with the same isolation."""
    report = BatchReport()
    for key in items:
        report.results.append(_run_unit(fn, key))
    return report


# =============================================================================
# Sweep summaries
# =============================================================================


@dataclass
class SweepSummary:
    """Result of a box-wide risk score recalculation."""
    box_id: str
    total: int = 0
    successful: int = 0
    failed: int = 0
    duration_seconds: float = 0.0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def summary(self) -> str:
        return (
            f"Risk scores for box {self.box_id}: {self.successful}/{self.total} "
            f"recalculated, {self.failed} failed ({self.duration_seconds:.1f}s)"
        )


@dataclass
class AlertSweepSummary:
    """Result of an alert generation sweep over one box."""
    box_id: str
    evaluated: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def summary(self) -> str:
        return (
            f"Alerts for box {self.box_id}: {self.created} created, "
            f"{self.updated} updated, {self.unchanged} unchanged, "
            f"{self.skipped} below threshold, {self.failed} failed"
        )


@dataclass
class EscalationSweepSummary:
    """Result of an auto-escalation sweep over one box."""
    box_id: str
    evaluated: int = 0
    escalated: int = 0
    skipped_cooldown: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def summary(self) -> str:
        return (
            f"Escalations for box {self.box_id}: {self.escalated}/{self.evaluated} "
            f"escalated, {self.skipped_cooldown} in cool-down, {self.failed} failed"
        )


@dataclass
class OutcomeSweepSummary:
    """Result of measuring ready intervention outcomes for one box."""
    box_id: str
    processed: int = 0
    positive: int = 0
    neutral: int = 0
    negative: int = 0
    failed: int = 0
    average_score: float | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def summary(self) -> str:
        avg = f"{self.average_score:.2f}" if self.average_score is not None else "n/a"
        return (
            f"Outcomes for box {self.box_id}: {self.processed} measured "
            f"({self.positive} positive, {self.neutral} neutral, "
            f"{self.negative} negative), {self.failed} failed, avg score {avg}"
        )
