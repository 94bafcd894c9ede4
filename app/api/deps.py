from fastapi import HTTPException

from app.scheduler.manager import SchedulerManager, get_scheduler_manager
from app.services.notification_gateway import NotificationGateway, get_notification_gateway
from app.services.policy_store import PolicyRecordStore, get_policy_store


def get_store() -> PolicyRecordStore:
    return get_policy_store()


def get_gateway() -> NotificationGateway:
    return get_notification_gateway()


def get_scheduler() -> SchedulerManager:
    mgr = get_scheduler_manager()
    if mgr is None:
        raise HTTPException(503, "Scheduler not running")
    return mgr
