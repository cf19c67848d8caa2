"""
Scheduler module for the Weather Alert service.

Runs the alert pipeline on a fixed interval in a background thread.
"""

import logging
from typing import Dict, List, Optional
from dataclasses import asdict

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import DEFAULT_FETCH_INTERVAL_HOURS
from .errors import CycleInProgressError, WeatherAlertError
from .pipeline import AlertPipeline, PipelineResult

logger = logging.getLogger(__name__)

WEATHER_JOB_ID = "weather_alert_job"
WEATHER_JOB_NAME = "Weather Fetch & Alert"


class WeatherScheduler:
    """
    Manages the periodic weather fetch-and-alert job.

    max_instances=1 keeps the timer from overlapping itself; overlap with an
    on-demand API trigger is refused by the pipeline lock.
    """

    def __init__(
        self,
        pipeline: AlertPipeline,
        interval_hours: int = DEFAULT_FETCH_INTERVAL_HOURS
    ):
        self.pipeline = pipeline
        self.interval_hours = interval_hours
        self.scheduler = BackgroundScheduler(timezone="UTC")
        self._is_running = False

    def _run_job(self) -> None:
        """Scheduled entry point; never raises into the scheduler thread."""
        logger.info("Scheduled job: starting weather fetch")
        try:
            result = self.pipeline.run_cycle()
        except CycleInProgressError:
            logger.warning("Scheduled job skipped: a cycle is already running")
            return
        except WeatherAlertError as e:
            logger.error(f"Scheduled job failed: {e}")
            return
        except Exception:
            logger.exception("Scheduled job crashed")
            return

        if not result.success:
            logger.warning(
                f"Scheduled job finished with errors: {result.errors}, "
                f"failed alerts: {result.alerts_failed}"
            )
        else:
            logger.info("Scheduled job: weather fetch completed successfully")

    def _add_job(self) -> None:
        self.scheduler.add_job(
            self._run_job,
            trigger=IntervalTrigger(hours=self.interval_hours),
            id=WEATHER_JOB_ID,
            name=WEATHER_JOB_NAME,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

    def start(self) -> None:
        """Start the scheduler."""
        if self._is_running:
            logger.warning("Scheduler already running")
            return

        self._add_job()
        self.scheduler.start()
        self._is_running = True

        logger.info(f"Scheduler started: weather fetch every {self.interval_hours}h")

    def stop(self) -> None:
        """Stop the scheduler."""
        if not self._is_running:
            return
        self.scheduler.shutdown(wait=True)
        self._is_running = False
        logger.info("Scheduler stopped")

    def trigger_immediate_run(self) -> PipelineResult:
        """Run one cycle now in the calling thread."""
        return self.pipeline.run_cycle()

    def get_last_result(self) -> Optional[PipelineResult]:
        return self.pipeline.last_result

    def describe_jobs(self) -> List[Dict[str, Optional[str]]]:
        """Describe the scheduled jobs, whether or not the scheduler is running."""
        job = self.scheduler.get_job(WEATHER_JOB_ID) if self._is_running else None
        next_run = job.next_run_time.isoformat() if job and job.next_run_time else None
        return [{
            "id": WEATHER_JOB_ID,
            "name": WEATHER_JOB_NAME,
            "trigger": f"every {self.interval_hours} hours",
            "next_run_time": next_run,
        }]

    def get_scheduler_status(self) -> dict:
        """Get scheduler status information."""
        last = self.get_last_result()
        return {
            "is_running": self._is_running,
            "interval_hours": self.interval_hours,
            "cycle_in_progress": self.pipeline.is_running,
            "jobs": self.describe_jobs(),
            "last_result": asdict(last) if last else None,
        }

    @property
    def is_running(self) -> bool:
        return self._is_running
