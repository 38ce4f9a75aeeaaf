"""API routes for the FastAPI application."""

from clubhouse.api.router import TrailingSlashRouter
from clubhouse.api.v1.endpoints import (
    admin,
    billing,
    cron,
    health,
    membership_settings,
    payments,
)

# Use our custom router that handles trailing slashes
api_router = TrailingSlashRouter()
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
api_router.include_router(
    membership_settings.router, prefix="/settings", tags=["membership-settings"]
)
api_router.include_router(cron.router, prefix="/cron", tags=["cron"])
