from fastapi import APIRouter

from app.config import settings

router = APIRouter()


@router.get(
    "/",
    summary="Health check",
    description="Policy store reachability and scheduler state, for monitoring and deployment probes.",
)
async def health_check():
    from app.scheduler.manager import get_scheduler_manager
    from app.services.policy_store import get_policy_store

    scheduler = get_scheduler_manager()
    scheduler_status = "running" if scheduler else "not_started"

    try:
        policies = await get_policy_store().list_all()
        store_status = f"ok ({len(policies)} policies)"
    except Exception as e:
        store_status = f"error: {e}"

    return {
        "status": "ok",
        "store": store_status,
        "scheduler": scheduler_status,
        "sweepEnabled": scheduler.config.enabled if scheduler else settings.RENEWAL_SCHEDULER_ENABLED,
        "dryRun": settings.NOTIFY_DRY_RUN,
    }


@router.get(
    "/sweep-status",
    summary="Last sweep",
    description="Result of the most recent reminder sweep.",
)
async def sweep_status():
    from app.scheduler.manager import get_scheduler_manager

    mgr = get_scheduler_manager()
    result = mgr.last_result if mgr else None
    if result is None:
        return {"status": "never_run", "message": "Renewal sweep has not run yet"}
    return result.to_dict()
