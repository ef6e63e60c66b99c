"""Periodic queue draining on top of APScheduler's background scheduler."""

from __future__ import annotations

from typing import Any, Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import ScheduleConfig, ScheduleType
from ..logging_conf import configure_logging

JOB_PREFIX = "process::"


def _interval_trigger(value: Any) -> IntervalTrigger:
    if isinstance(value, dict):
        return IntervalTrigger(**value)
    if isinstance(value, (int, float)):
        return IntervalTrigger(seconds=float(value))
    raise ValueError(f"Interval schedule needs seconds or IntervalTrigger kwargs, got {value!r}")


class APSchedulerAdapter:
    """One `process_pending` job per tenant, never overlapping itself."""

    def __init__(self, scheduler: BackgroundScheduler | None = None) -> None:
        self.scheduler = scheduler if scheduler is not None else BackgroundScheduler()
        self.started = False
        self.logger = configure_logging().bind(component="scheduler")

    def start(self) -> None:
        if self.started:
            return
        self.scheduler.start()
        self.started = True
        self.logger.info("scheduler_started")

    def shutdown(self) -> None:
        if not self.started:
            return
        self.scheduler.shutdown(wait=False)
        self.started = False
        self.logger.info("scheduler_stopped")

    @staticmethod
    def job_id(tenant_id: str) -> str:
        return JOB_PREFIX + tenant_id

    @staticmethod
    def build_trigger(schedule: ScheduleConfig) -> BaseTrigger:
        if schedule.type is ScheduleType.INTERVAL:
            return _interval_trigger(schedule.value)
        if schedule.type is ScheduleType.CRON:
            return CronTrigger.from_crontab(str(schedule.value))
        raise ValueError(f"Unknown schedule type: {schedule.type}")

    def schedule_processing(
        self, tenant_id: str, callback: Callable[[str], object], schedule: ScheduleConfig
    ) -> str:
        job_id = self.job_id(tenant_id)
        self.scheduler.add_job(
            callback,
            trigger=self.build_trigger(schedule),
            id=job_id,
            args=[tenant_id],
            replace_existing=True,
            # a tick that lands while the queue is still draining is dropped
            max_instances=1,
            coalesce=True,
        )
        self.logger.info(
            "processing_scheduled", tenant_id=tenant_id, schedule=schedule.model_dump(mode="json")
        )
        return job_id

    def remove_tenant(self, tenant_id: str) -> bool:
        job = self.scheduler.get_job(self.job_id(tenant_id))
        if job is None:
            self.logger.warning("processing_not_scheduled", tenant_id=tenant_id)
            return False
        job.remove()
        self.logger.info("processing_unscheduled", tenant_id=tenant_id)
        return True

    def list_jobs(self) -> list[dict[str, Any]]:
        return [
            {"id": job.id, "next_run_time": getattr(job, "next_run_time", None), "trigger": str(job.trigger)}
            for job in self.scheduler.get_jobs()
        ]


__all__ = ["APSchedulerAdapter"]
