import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from scalar_fastapi import get_scalar_api_reference

from app.api.v1.router import v1_router
from app.config import settings
from app.scheduler.manager import SchedulerManager
from app.services.notification_gateway import get_notification_gateway
from app.services.policy_store import (
    ConcurrentUpdateError,
    PolicyStoreError,
    get_policy_store,
)
from app.services.renewal.errors import (
    PolicyNotFoundError,
    RenewalError,
    RenewalValidationError,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# OpenAPI tag metadata
# ---------------------------------------------------------------------------
TAG_METADATA = [
    {
        "name": "renewals",
        "description": "Policy renewals: expiry views, tracking updates, manual and bulk "
        "reminders, renewal processing and the daily reminder sweep.",
    },
    {
        "name": "health",
        "description": "System health: policy store, scheduler state and the last sweep.",
    },
]


def _validate_startup() -> dict[str, str]:
    """Check configuration that only shows up as failed sends later."""
    issues: dict[str, str] = {}

    settings.POLICY_STORE_FILE.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Startup check: policy store at %s", settings.POLICY_STORE_FILE)

    if settings.NOTIFY_DRY_RUN:
        logger.warning("Startup check: NOTIFY_DRY_RUN is on, no messages will be delivered")
    elif not settings.SMTP_USER:
        issues["smtp"] = "SMTP_USER not set"
        logger.warning("Startup check: SMTP not configured, email reminders will fail")

    return issues


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of the renewal scheduler."""
    logger.info("=" * 60)
    logger.info("  Policy Renewal Service starting")
    logger.info("=" * 60)

    startup_issues = _validate_startup()

    scheduler: SchedulerManager | None = SchedulerManager(
        get_policy_store(), get_notification_gateway()
    )
    try:
        await scheduler.start()
    except Exception as e:
        logger.error("Scheduler failed to start: %s", e)
        scheduler = None

    if startup_issues:
        logger.warning("Startup completed with issues: %s", list(startup_issues))
    else:
        logger.info("Application startup complete, all checks passed")

    yield

    if scheduler:
        try:
            await scheduler.stop()
        except Exception as e:
            logger.error("Scheduler failed to stop cleanly: %s", e)

    logger.info("Application shutdown complete")


app = FastAPI(
    title="Policy Renewal Service API",
    summary="Insurance policy renewal tracking and reminders",
    description=(
        "## Overview\n\n"
        "Tracks insurance policies approaching expiry, classifies them by urgency and "
        "sends renewal reminders by email, SMS and WhatsApp. A daily sweep emails "
        "clients 30 and 7 days before expiry and every day in the final week.\n\n"
        "## Buckets\n\n"
        "- `Overdue`: expiry has passed\n"
        "- `Urgent`: 0-7 days left\n"
        "- `Pending Renewal`: 8-30 days left\n"
        "- `Upcoming`: more than 30 days left, or no expiry date\n\n"
        "## Stack\n\n"
        "FastAPI + APScheduler + httpx + Jinja2"
    ),
    version="0.1.0",
    openapi_tags=TAG_METADATA,
    lifespan=lifespan,
    docs_url="/swagger",
    redoc_url=None,
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "detail": str(exc)},
    )


@app.exception_handler(PolicyNotFoundError)
async def policy_not_found_handler(request: Request, exc: PolicyNotFoundError):
    return _error(404, exc)


@app.exception_handler(RenewalValidationError)
async def validation_error_handler(request: Request, exc: RenewalValidationError):
    return _error(400, exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    detail = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(status_code=400, content={"success": False, "detail": detail})


@app.exception_handler(ConcurrentUpdateError)
async def concurrent_update_handler(request: Request, exc: ConcurrentUpdateError):
    return _error(409, exc)


@app.exception_handler(PolicyStoreError)
async def policy_store_error_handler(request: Request, exc: PolicyStoreError):
    logger.error("Policy store unavailable on %s: %s", request.url.path, exc)
    return _error(503, exc)


@app.exception_handler(RenewalError)
async def renewal_error_handler(request: Request, exc: RenewalError):
    logger.error("Unhandled renewal error on %s: %s", request.url.path, exc)
    return _error(500, exc)


# Register API routes
app.include_router(v1_router)


@app.get("/", tags=["default"], summary="API entry", include_in_schema=False)
async def root():
    return {
        "message": "Policy Renewal Service API",
        "version": "0.1.0",
        "docs": "/docs",
        "swagger": "/swagger",
        "openapi": "/openapi.json",
    }


# ---------------------------------------------------------------------------
# Scalar API Reference
# ---------------------------------------------------------------------------
@app.get("/docs", include_in_schema=False)
async def scalar_html():
    return get_scalar_api_reference(
        openapi_url=app.openapi_url,
        title=app.title,
    )
