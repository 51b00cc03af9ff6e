"""
Scheduled retention tasks.

Runs the components in their required order for each box: risk scores,
then alerts, then escalations, and, on the weekly schedule, intervention
outcomes. A failing box is logged and reported; it never stops the
remaining boxes.

Usage:
    retention-jobs daily                      # Scores, alerts, escalations for all boxes
    retention-jobs weekly                     # Intervention outcomes for all boxes
    retention-jobs box BOX_ID                 # Full pipeline for one box
    retention-jobs escalation-report BOX_ID   # Markdown escalation report
"""

import logging
import random
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from sqlalchemy.engine import Engine

from .config import EngineConfig, engine_config_from_settings, get_settings
from .data.database import get_engine
from .data.store import RetentionStore
from .early_warning.generator import AlertGenerator
from .escalation.analysis import EscalationAnalyzer, format_escalation_report_markdown
from .escalation.engine import EscalationEngine
from .outcomes.tracker import OutcomeTracker
from .scoring.calculator import RiskScoreCalculator
from .utils import utcnow

logger = logging.getLogger(__name__)

console = Console()


@dataclass
class TaskResult:
    """Result of one scheduled task for one box (or globally)."""
    task: str
    box_id: str | None = None
    success: bool = True
    summaries: list[Any] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0


def run_box_pipeline(
    store: RetentionStore,
    box_id: str,
    config: EngineConfig,
    now: datetime | None = None,
    rng: random.Random | None = None,
    include_outcomes: bool = False,
) -> list[Any]:
    """Run calculator, generator and escalation (and optionally outcomes) for a box.

    Args:
        store: Data access layer.
        box_id: Box to process.
        config: Engine configuration.
        now: Reference time shared by every step.
        rng: Random source for coach assignment.
        include_outcomes: Also measure ready intervention outcomes.

    Returns:
        The sweep summaries, in execution order.
    """
    now = now or utcnow()
    summaries: list[Any] = [
        RiskScoreCalculator(store, config).recalculate_box(box_id, now),
        AlertGenerator(store, config, rng=rng).process_box(box_id, now),
        EscalationEngine(store, config).process_box(box_id, now),
    ]
    if include_outcomes:
        summaries.append(OutcomeTracker(store, config).process_ready(box_id, now=now))
    return summaries


def _summary_errors(summaries: list[Any]) -> list[str]:
    return [err for s in summaries for err in getattr(s, "errors", [])]


def run_daily_tasks(
    store: RetentionStore,
    config: EngineConfig,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> list[TaskResult]:
    """Daily run: per-box pipeline, then global expired-score cleanup."""
    now = now or utcnow()
    results: list[TaskResult] = []
    box_ids = store.list_active_box_ids()
    logger.info(f"Starting daily retention tasks for {len(box_ids)} boxes")

    for box_id in box_ids:
        start = time.perf_counter()
        try:
            summaries = run_box_pipeline(store, box_id, config, now, rng)
            results.append(
                TaskResult(
                    task="daily",
                    box_id=box_id,
                    success=all(s.success for s in summaries),
                    summaries=summaries,
                    errors=_summary_errors(summaries),
                    duration_seconds=time.perf_counter() - start,
                )
            )
        except Exception as e:
            logger.error(f"Daily tasks failed for box {box_id}: {e}")
            results.append(
                TaskResult(
                    task="daily",
                    box_id=box_id,
                    success=False,
                    errors=[str(e)],
                    duration_seconds=time.perf_counter() - start,
                )
            )

    start = time.perf_counter()
    try:
        removed = RiskScoreCalculator(store, config).cleanup_expired(now)
        results.append(
            TaskResult(
                task="cleanup",
                summaries=[{"removed": removed}],
                duration_seconds=time.perf_counter() - start,
            )
        )
    except Exception as e:
        logger.error(f"Expired score cleanup failed: {e}")
        results.append(TaskResult(task="cleanup", success=False, errors=[str(e)]))

    failed = sum(1 for r in results if not r.success)
    logger.info(f"Daily retention tasks finished: {len(results) - failed} ok, {failed} failed")
    return results


def run_weekly_tasks(
    store: RetentionStore,
    config: EngineConfig,
    now: datetime | None = None,
) -> list[TaskResult]:
    """Weekly run: intervention outcome measurement for every box."""
    now = now or utcnow()
    results: list[TaskResult] = []
    tracker = OutcomeTracker(store, config)
    box_ids = store.list_active_box_ids()
    logger.info(f"Starting weekly outcome measurement for {len(box_ids)} boxes")

    for box_id in box_ids:
        start = time.perf_counter()
        try:
            summary = tracker.process_ready(box_id, now=now)
            results.append(
                TaskResult(
                    task="weekly",
                    box_id=box_id,
                    success=summary.success,
                    summaries=[summary],
                    errors=summary.errors,
                    duration_seconds=time.perf_counter() - start,
                )
            )
        except Exception as e:
            logger.error(f"Weekly tasks failed for box {box_id}: {e}")
            results.append(
                TaskResult(
                    task="weekly",
                    box_id=box_id,
                    success=False,
                    errors=[str(e)],
                    duration_seconds=time.perf_counter() - start,
                )
            )
    return results


# =============================================================================
# CLI
# =============================================================================


def _print_results(results: list[TaskResult]) -> None:
    table = Table(title="Retention Tasks")
    table.add_column("Task", style="cyan")
    table.add_column("Box", style="magenta")
    table.add_column("Status")
    table.add_column("Details")
    table.add_column("Seconds", justify="right")

    for result in results:
        status = "[green]✓ ok[/green]" if result.success else "[red]✗ failed[/red]"
        details = [s.summary() if hasattr(s, "summary") else str(s) for s in result.summaries]
        details.extend(f"[red]{err}[/red]" for err in result.errors[:3])
        table.add_row(
            result.task,
            result.box_id or "-",
            status,
            "\n".join(details),
            f"{result.duration_seconds:.1f}",
        )
    console.print(table)


@click.group()
@click.option("--database-url", envvar="DATABASE_URL", default=None, help="Override DATABASE_URL.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, database_url: str | None, verbose: bool):
    """Scheduled retention engine tasks."""
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    engine: Engine = get_engine(database_url or settings.database_url)
    ctx.obj = {
        "store": RetentionStore(engine),
        "config": engine_config_from_settings(settings),
        "rng": random.Random(settings.seed),
    }


@cli.command()
@click.pass_obj
def daily(obj: dict):
    """Recalculate scores, generate alerts and escalate for every box."""
    results = run_daily_tasks(obj["store"], obj["config"], rng=obj["rng"])
    _print_results(results)
    if not all(r.success for r in results):
        sys.exit(1)


@cli.command()
@click.pass_obj
def weekly(obj: dict):
    """Measure intervention outcomes for every box."""
    results = run_weekly_tasks(obj["store"], obj["config"])
    _print_results(results)
    if not all(r.success for r in results):
        sys.exit(1)


@cli.command()
@click.argument("box_id")
@click.pass_obj
def box(obj: dict, box_id: str):
    """Run the full pipeline for one box."""
    start = time.perf_counter()
    summaries = run_box_pipeline(
        obj["store"], box_id, obj["config"], rng=obj["rng"], include_outcomes=True
    )
    result = TaskResult(
        task="box",
        box_id=box_id,
        success=all(s.success for s in summaries),
        summaries=summaries,
        errors=_summary_errors(summaries),
        duration_seconds=time.perf_counter() - start,
    )
    _print_results([result])
    if not result.success:
        sys.exit(1)


@cli.command("escalation-report")
@click.argument("box_id")
@click.option("--lookback-days", default=30, show_default=True, help="Analysis window.")
@click.pass_obj
def escalation_report(obj: dict, box_id: str, lookback_days: int):
    """Print a markdown escalation report for one box."""
    analyzer = EscalationAnalyzer(obj["store"], obj["config"])
    analysis = analyzer.analyze_escalation_patterns(box_id, lookback_days)
    recommendations = analyzer.generate_escalation_recommendations(box_id)
    click.echo(format_escalation_report_markdown(analysis, recommendations))


if __name__ == "__main__":
    cli()
