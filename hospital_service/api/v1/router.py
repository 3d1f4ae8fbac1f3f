"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from hospital_service.api.v1 import access, consents, health, permissions, tenants

api_router = APIRouter()

# Health check
api_router.include_router(
    health.router,
    prefix="/health",
    tags=["health"],
)

# Consent lifecycle
api_router.include_router(consents.router)

# Access gate and audit trail
api_router.include_router(access.router)

# Caller permissions
api_router.include_router(permissions.router)

# Tenant quotas
api_router.include_router(tenants.router)
