"""Tests for the periodic weather job."""

import logging
from unittest.mock import Mock

import pytest

from weather_alerts.errors import CycleInProgressError, PersistenceError
from weather_alerts.pipeline import AlertPipeline, PipelineResult
from weather_alerts.scheduler import WEATHER_JOB_ID, WeatherScheduler


@pytest.fixture
def pipeline():
    pipeline = Mock(spec=AlertPipeline)
    pipeline.is_running = False
    pipeline.last_result = None
    pipeline.run_cycle.return_value = PipelineResult(started_at="2026-10-17T00:00:00+00:00")
    return pipeline


def test_start_registers_interval_job(pipeline):
    scheduler = WeatherScheduler(pipeline, interval_hours=2)
    scheduler.start()
    try:
        assert scheduler.is_running
        job = scheduler.scheduler.get_job(WEATHER_JOB_ID)
        assert job is not None
        assert job.max_instances == 1
        assert scheduler.describe_jobs()[0]["next_run_time"] is not None
    finally:
        scheduler.stop()

    assert not scheduler.is_running


def test_describe_jobs_without_starting(pipeline):
    jobs = WeatherScheduler(pipeline, interval_hours=3).describe_jobs()

    assert jobs == [{
        "id": WEATHER_JOB_ID,
        "name": "Weather Fetch & Alert",
        "trigger": "every 3 hours",
        "next_run_time": None,
    }]


def test_trigger_immediate_run_delegates(pipeline):
    result = WeatherScheduler(pipeline).trigger_immediate_run()

    pipeline.run_cycle.assert_called_once()
    assert result.started_at.startswith("2026-10-17")


@pytest.mark.parametrize("error", [
    CycleInProgressError("busy"),
    PersistenceError("database locked"),
    RuntimeError("unexpected"),
])
def test_job_never_raises(pipeline, error):
    pipeline.run_cycle.side_effect = error

    WeatherScheduler(pipeline)._run_job()

    pipeline.run_cycle.assert_called_once()


def test_status_reports_last_result(pipeline):
    pipeline.last_result = PipelineResult(started_at="t0", alerts_sent=3)

    status = WeatherScheduler(pipeline).get_scheduler_status()

    assert status["is_running"] is False
    assert status["last_result"]["alerts_sent"] == 3


def test_job_with_failed_alerts_logs_warning(pipeline, caplog):
    pipeline.run_cycle.return_value = PipelineResult(started_at="t0", alerts_failed=1)

    with caplog.at_level(logging.WARNING, logger="weather_alerts.scheduler"):
        WeatherScheduler(pipeline)._run_job()

    assert "finished with errors" in caplog.text
