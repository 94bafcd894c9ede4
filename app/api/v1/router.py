from fastapi import APIRouter

from app.api.v1 import health, renewals

v1_router = APIRouter(prefix="/api/v1")

v1_router.include_router(renewals.router, prefix="/renewals", tags=["renewals"])
v1_router.include_router(health.router, prefix="/health", tags=["health"])
