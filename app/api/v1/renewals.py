from fastapi import APIRouter, Depends, Query

from app.api.deps import get_gateway, get_scheduler, get_store
from app.scheduler.manager import SchedulerManager
from app.schemas.common import ErrorResponse
from app.schemas.renewal import (
    BulkReminderRequest,
    ProcessRenewalRequest,
    RenewalUpdate,
    SchedulerConfigureRequest,
    SendReminderRequest,
)
from app.services.notification_gateway import NotificationGateway
from app.services.policy_store import PolicyRecordStore
from app.services.renewal import reminders, service
from app.services.renewal.errors import RenewalValidationError

router = APIRouter()

NOT_FOUND = {404: {"model": ErrorResponse, "description": "Policy not found"}}
BAD_REQUEST = {400: {"model": ErrorResponse, "description": "Invalid input"}}


@router.get(
    "/",
    summary="Renewal list",
    description="Categorized renewals (overdue / urgent / pending / upcoming) with counts. "
    "Pass `status=overdue` for the overdue list or `daysAhead=N` for policies due "
    "within N days.",
)
async def list_renewals(
    status: str | None = Query(None, description="Only `overdue` is recognised"),
    days_ahead: str | None = Query(None, alias="daysAhead", description="Due window in days"),
    store: PolicyRecordStore = Depends(get_store),
):
    if status == "overdue":
        renewals = await service.get_overdue(store)
        return {"success": True, "renewals": renewals, "count": len(renewals)}
    if days_ahead is not None:
        renewals = await service.get_due_for_renewal(store, days_ahead)
        return {"success": True, "renewals": renewals, "count": len(renewals)}
    categorized = await service.get_all_categorized(store)
    return {"success": True, **categorized}


@router.get(
    "/stats",
    summary="Renewal statistics",
    description="Due this month, overdue, renewed this month and last month's renewal rate.",
)
async def renewal_stats(store: PolicyRecordStore = Depends(get_store)):
    return {"success": True, "stats": await service.get_renewal_stats(store)}


@router.get("/overdue", summary="Overdue renewals")
async def overdue_renewals(store: PolicyRecordStore = Depends(get_store)):
    renewals = await service.get_overdue(store)
    return {"success": True, "renewals": renewals, "count": len(renewals)}


@router.get(
    "/due/{days}",
    summary="Due within N days",
    description="Active or payment-approved policies expiring in the next N days. "
    "Non-positive or non-numeric values fall back to the default window.",
)
async def due_renewals(days: str, store: PolicyRecordStore = Depends(get_store)):
    renewals = await service.get_due_for_renewal(store, days)
    return {"success": True, "renewals": renewals, "count": len(renewals)}


@router.post(
    "/bulk-reminder",
    summary="Bulk reminders",
    description="Remind every due policy expiring around the target day that has not "
    "been contacted recently.",
    responses=BAD_REQUEST,
)
async def bulk_reminder(
    body: BulkReminderRequest | None = None,
    store: PolicyRecordStore = Depends(get_store),
    gateway: NotificationGateway = Depends(get_gateway),
):
    body = body or BulkReminderRequest()
    return await reminders.send_bulk_reminders(
        store, gateway, body.days_before_expiry, body.channels
    )


@router.get(
    "/scheduler/status",
    summary="Scheduler status",
    description="Whether the daily sweep is enabled or running, plus its schedule and run times.",
)
async def scheduler_status(mgr: SchedulerManager = Depends(get_scheduler)):
    return {"success": True, "scheduler": mgr.get_status()}


@router.post(
    "/scheduler/trigger",
    summary="Run sweep now",
    description="Run the reminder sweep immediately. Returns the sweep result, or "
    "`Already running` when a sweep is in progress.",
)
async def scheduler_trigger(mgr: SchedulerManager = Depends(get_scheduler)):
    result = await mgr.trigger_now()
    if result.get("success") is False:
        return result
    return {"success": True, "result": result}


@router.post(
    "/scheduler/configure",
    summary="Configure scheduler",
    description="Enable or disable the sweep and set its daily run time (hour 0-23, minute 0-59).",
    responses=BAD_REQUEST,
)
async def scheduler_configure(
    body: SchedulerConfigureRequest,
    mgr: SchedulerManager = Depends(get_scheduler),
):
    await mgr.update_config(
        enabled=body.enabled, run_hour=body.run_hour, run_minute=body.run_minute
    )
    return {"success": True, "scheduler": mgr.get_status()}


@router.get("/{policy_id}", summary="Renewal detail", responses=NOT_FOUND)
async def get_renewal(policy_id: str, store: PolicyRecordStore = Depends(get_store)):
    return {"success": True, "renewal": await service.get_renewal(store, policy_id)}


@router.put(
    "/{policy_id}",
    summary="Update renewal tracking",
    description="Set the renewal status and/or notes.",
    responses={**NOT_FOUND, **BAD_REQUEST},
)
async def update_renewal(
    policy_id: str,
    body: RenewalUpdate,
    store: PolicyRecordStore = Depends(get_store),
):
    renewal = await service.update_renewal_status(
        store, policy_id, status=body.renewal_status, notes=body.notes
    )
    return {"success": True, "renewal": renewal}


@router.post(
    "/{policy_id}/send-reminder",
    summary="Send reminder",
    description="Send a composed reminder over the chosen channels and log it on the policy.",
    responses={**NOT_FOUND, **BAD_REQUEST},
)
async def send_reminder(
    policy_id: str,
    body: SendReminderRequest,
    store: PolicyRecordStore = Depends(get_store),
    gateway: NotificationGateway = Depends(get_gateway),
):
    if not body.subject or not body.message:
        raise RenewalValidationError("Subject and message are required")
    return await reminders.send_reminder(
        store,
        gateway,
        policy_id,
        body.subject,
        body.message,
        body.channels,
        body.notify_admin,
    )


@router.put(
    "/{policy_id}/process",
    summary="Process renewal",
    description="Roll the coverage forward one term (or to the given dates) and mark it renewed.",
    responses={**NOT_FOUND, **BAD_REQUEST},
)
async def process_renewal(
    policy_id: str,
    body: ProcessRenewalRequest | None = None,
    store: PolicyRecordStore = Depends(get_store),
):
    body = body or ProcessRenewalRequest()
    renewal = await service.process_renewal(
        store,
        policy_id,
        insurance_start_date=body.insurance_start_date,
        insurance_end_date=body.insurance_end_date,
    )
    return {"success": True, "message": "Policy renewed", "renewal": renewal}
