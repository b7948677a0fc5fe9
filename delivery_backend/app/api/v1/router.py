"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from delivery_backend.app.api.v1.endpoints import deliveries, driver_deliveries

router = APIRouter()

# Sender + public tracking endpoints
router.include_router(deliveries.router)

# Driver endpoints
router.include_router(driver_deliveries.router)
