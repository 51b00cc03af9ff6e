"""
Tests for scheduled tasks and the command line interfaces.

Run with: pytest tests/test_jobs.py -v
"""

import random

import pytest
from click.testing import CliRunner

from retention import jobs
from retention.data.database import cli as db_cli
from retention.jobs import cli as jobs_cli
from retention.jobs import run_box_pipeline, run_daily_tasks, run_weekly_tasks


@pytest.fixture
def two_boxes(seed):
    """An absent athlete in box-1 and a regular in box-2, each with a coach."""
    seed.member("c-1", role="coach")
    seed.member("m-1")
    seed.attendance("m-1", 20)
    for day in (5, 10, 15):
        seed.attendance("m-1", day, status="no_show")
    for day in range(1, 11):
        seed.checkin("m-1", day, energy=5, sleep=5, stress=5, readiness=5)

    seed.member("c-2", box_id="box-2", role="head_coach")
    seed.member("m-2", box_id="box-2")
    for day in range(1, 21):
        seed.attendance("m-2", day, box_id="box-2")
    return ["box-1", "box-2"]


class TestBoxPipeline:
    """Ordered per-box execution."""

    def test_pipeline_order(self, store, two_boxes, now, fast_config):
        summaries = run_box_pipeline(store, "box-1", fast_config, now, random.Random(0))

        assert [type(s).__name__ for s in summaries] == [
            "SweepSummary",
            "AlertSweepSummary",
            "EscalationSweepSummary",
        ]
        assert summaries[0].successful == 1
        assert summaries[1].created == 1
        assert store.get_active_alert("m-1", "risk_threshold")["assigned_coach_id"] == "c-1"

    def test_outcomes_included_on_request(self, store, two_boxes, now, fast_config):
        summaries = run_box_pipeline(store, "box-1", fast_config, now, include_outcomes=True)
        assert type(summaries[-1]).__name__ == "OutcomeSweepSummary"


class TestDailyTasks:
    """Daily runs across all boxes."""

    def test_all_boxes_then_cleanup(self, store, two_boxes, now, fast_config):
        results = run_daily_tasks(store, fast_config, now, random.Random(0))

        assert [(r.task, r.box_id) for r in results] == [
            ("daily", "box-1"),
            ("daily", "box-2"),
            ("cleanup", None),
        ]
        assert all(r.success for r in results)
        assert results[-1].summaries == [{"removed": 0}]

    def test_failing_box_isolated(self, store, two_boxes, now, fast_config, monkeypatch):
        original = jobs.run_box_pipeline

        def flaky(store, box_id, *args, **kwargs):
            if box_id == "box-2":
                raise RuntimeError("box-2 unreachable")
            return original(store, box_id, *args, **kwargs)

        monkeypatch.setattr(jobs, "run_box_pipeline", flaky)
        results = run_daily_tasks(store, fast_config, now)

        assert results[0].success
        assert not results[1].success
        assert results[1].errors == ["box-2 unreachable"]
        assert results[2].task == "cleanup"


class TestWeeklyTasks:

    def test_measures_ready_interventions(self, store, seed, two_boxes, now, fast_config):
        seed.intervention("i-1", "m-1", coach_id="c-1", days_ago=40)

        results = run_weekly_tasks(store, fast_config, now)

        assert [r.box_id for r in results] == ["box-1", "box-2"]
        assert results[0].summaries[0].processed == 1
        assert results[1].summaries[0].processed == 0
        assert store.get_outcome("i-1") is not None


# =============================================================================
# TestCLI
# =============================================================================


class TestCLI:
    """Click entry points against a SQLite file."""

    @pytest.fixture
    def url(self, tmp_path):
        return f"sqlite:///{tmp_path / 'cli.db'}"

    def test_db_init_and_check(self, url):
        runner = CliRunner()

        result = runner.invoke(db_cli, ["--database-url", url, "init"])
        assert result.exit_code == 0
        assert "Database initialized successfully" in result.output

        result = runner.invoke(db_cli, ["--database-url", url, "check"])
        assert result.exit_code == 0
        assert "Connection successful" in result.output

    def test_box_command(self, url):
        runner = CliRunner()
        runner.invoke(db_cli, ["--database-url", url, "init"])

        result = runner.invoke(jobs_cli, ["--database-url", url, "box", "box-1"])
        assert result.exit_code == 0
        assert "Retention Tasks" in result.output

    def test_escalation_report_command(self, url):
        runner = CliRunner()
        runner.invoke(db_cli, ["--database-url", url, "init"])

        result = runner.invoke(jobs_cli, ["--database-url", url, "escalation-report", "box-1"])
        assert result.exit_code == 0
        assert "# Escalation Report" in result.output
        assert "**Box**: box-1" in result.output
