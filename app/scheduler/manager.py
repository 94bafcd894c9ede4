from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, Field, ValidationError

from app.config import settings
from app.scheduler.locks import FileSweepLock, SweepLock
from app.scheduler.renewal_sweep import SweepResult, run_renewal_sweep
from app.services.notification_gateway import NotificationGateway
from app.services.policy_store import PolicyRecordStore
from app.services.renewal.errors import RenewalValidationError

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "renewal_sweep"
ALREADY_RUNNING = {"success": False, "reason": "Already running"}

# Module-level reference for access from API routes
_scheduler_manager: SchedulerManager | None = None


def get_scheduler_manager() -> SchedulerManager | None:
    return _scheduler_manager


class SchedulerConfig(BaseModel):
    enabled: bool = False
    run_hour: int = Field(9, ge=0, le=23)
    run_minute: int = Field(0, ge=0, le=59)

    @classmethod
    def from_settings(cls) -> SchedulerConfig:
        return cls(
            enabled=settings.RENEWAL_SCHEDULER_ENABLED,
            run_hour=settings.RENEWAL_SCHEDULER_HOUR,
            run_minute=settings.RENEWAL_SCHEDULER_MINUTE,
        )

    @property
    def scheduled_time(self) -> str:
        return f"{self.run_hour}:{self.run_minute:02d}"


@dataclass
class SchedulerState:
    """Mutable scheduler state. Only ``SchedulerManager`` writes to it."""

    config: SchedulerConfig
    running: bool = False
    last_run_time: datetime | None = None
    last_result: SweepResult | None = None


class SchedulerManager:
    def __init__(
        self,
        store: PolicyRecordStore,
        gateway: NotificationGateway,
        *,
        config: SchedulerConfig | None = None,
        sweep_lock: SweepLock | None = None,
        send_delay: float | None = None,
    ) -> None:
        self.scheduler = AsyncIOScheduler(
            timezone=settings.TIMEZONE,
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        self.store = store
        self.gateway = gateway
        self.send_delay = send_delay
        self._state = SchedulerState(config=config or SchedulerConfig.from_settings())
        self._config_lock = asyncio.Lock()
        if sweep_lock is None and settings.SWEEP_LOCK_FILE:
            sweep_lock = FileSweepLock(settings.SWEEP_LOCK_FILE)
        self._sweep_lock = sweep_lock

    @property
    def config(self) -> SchedulerConfig:
        return self._state.config

    @property
    def last_result(self) -> SweepResult | None:
        return self._state.last_result

    async def start(self) -> None:
        global _scheduler_manager
        _scheduler_manager = self

        self.scheduler.start()
        if self.config.enabled:
            self._install_job()
            logger.info(
                "Renewal scheduler started - will run daily at %s (%s)",
                self.config.scheduled_time, settings.TIMEZONE,
            )
        else:
            logger.info(
                "Renewal scheduler is disabled. Set RENEWAL_SCHEDULER_ENABLED=true to enable."
            )

    async def stop(self) -> None:
        global _scheduler_manager
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        if _scheduler_manager is self:
            _scheduler_manager = None
        logger.info("Renewal scheduler stopped")

    def _install_job(self) -> None:
        self.scheduler.add_job(
            self.run_sweep,
            trigger=CronTrigger(
                hour=self.config.run_hour,
                minute=self.config.run_minute,
                timezone=settings.TIMEZONE,
            ),
            id=SWEEP_JOB_ID,
            replace_existing=True,
            misfire_grace_time=3600,
        )

    def _remove_job(self) -> None:
        if self.scheduler.get_job(SWEEP_JOB_ID) is not None:
            self.scheduler.remove_job(SWEEP_JOB_ID)

    async def update_config(
        self,
        *,
        enabled: bool | None = None,
        run_hour: int | None = None,
        run_minute: int | None = None,
    ) -> SchedulerConfig:
        """Validate and merge new settings, then swap the scheduled job.

        The old job is always removed before a new one is installed, so at
        most one sweep timer exists.
        """
        updates = {
            key: value
            for key, value in (
                ("enabled", enabled),
                ("run_hour", run_hour),
                ("run_minute", run_minute),
            )
            if value is not None
        }
        try:
            new_config = SchedulerConfig.model_validate(
                {**self.config.model_dump(), **updates}
            )
        except ValidationError as e:
            raise RenewalValidationError(f"Invalid scheduler configuration: {e}") from e

        async with self._config_lock:
            self._remove_job()
            self._state.config = new_config
            if new_config.enabled and self.scheduler.running:
                self._install_job()

        logger.info(
            "Renewal scheduler reconfigured: enabled=%s time=%s",
            new_config.enabled, new_config.scheduled_time,
        )
        return new_config

    async def run_sweep(self) -> dict[str, Any]:
        """Run one sweep unless another is in progress."""
        if self._state.running:
            logger.info("Renewal sweep already in progress, skipping")
            return dict(ALREADY_RUNNING)
        self._state.running = True

        try:
            if self._sweep_lock is not None and not self._sweep_lock.try_acquire():
                logger.info("Renewal sweep lock held by another worker, skipping")
                return dict(ALREADY_RUNNING)
            try:
                result = await run_renewal_sweep(
                    self.store, self.gateway, send_delay=self.send_delay
                )
            finally:
                if self._sweep_lock is not None:
                    self._sweep_lock.release()
        finally:
            self._state.running = False

        self._state.last_result = result
        if result.error is None:
            self._state.last_run_time = result.finished_at
        return result.to_dict()

    async def trigger_now(self) -> dict[str, Any]:
        """Manually run the sweep now, outside the daily schedule."""
        logger.info("Manually triggered renewal sweep")
        return await self.run_sweep()

    def get_status(self) -> dict[str, Any]:
        job = self.scheduler.get_job(SWEEP_JOB_ID) if self.scheduler.running else None
        next_run = job.next_run_time if job is not None else None
        return {
            "enabled": self.config.enabled,
            "running": self._state.running,
            "scheduledTime": self.config.scheduled_time,
            "lastRunTime": self._state.last_run_time,
            "nextRunTime": next_run,
        }
