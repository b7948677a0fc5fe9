"""
Delivery API Endpoints (sender + public tracking).

Role checks happen here; whether the caller is the delivery's sender or
assigned driver is decided by the lifecycle service.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status

from delivery_backend.app.core.dependencies import get_current_user, get_delivery_service
from delivery_backend.app.core.guards import require_sender
from delivery_backend.app.domain.delivery.lifecycle_service import DeliveryLifecycleService
from delivery_backend.app.schemas.delivery import (
    CancelDeliveryRequest,
    CreateDeliveryRequest,
    DeliveryDetailResponse,
    DeliveryEstimateRequest,
    DeliveryEstimateResponse,
    DeliveryListResponse,
    DeliveryStatsResponse,
    MessageResponse,
    PublicTrackingResponse,
    RateDeliveryRequest,
)

router = APIRouter(prefix="/deliveries", tags=["Deliveries"])


@router.post("/estimate", response_model=DeliveryEstimateResponse)
async def get_estimate(
    request: DeliveryEstimateRequest,
    current_user: dict = Depends(require_sender),
    service: DeliveryLifecycleService = Depends(get_delivery_service)
):
    """Quote a delivery without creating it."""
    return await service.get_estimate(request)


@router.post("", response_model=DeliveryDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_delivery(
    request: CreateDeliveryRequest,
    current_user: dict = Depends(require_sender),
    service: DeliveryLifecycleService = Depends(get_delivery_service)
):
    """
    Create a delivery request (Sender only).

    The response carries the tracking code; the proof PIN is never returned.
    """
    return await service.create_delivery(current_user["user_id"], request)


@router.get("", response_model=DeliveryListResponse)
async def list_my_deliveries(
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = Query(None),
    from_date: Optional[datetime] = Query(None),
    to_date: Optional[datetime] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    offset: Optional[int] = Query(None, ge=0),
    current_user: dict = Depends(require_sender),
    service: DeliveryLifecycleService = Depends(get_delivery_service)
):
    """List the caller's deliveries, newest first."""
    return await service.get_my_deliveries(
        current_user["user_id"],
        status=status_filter,
        priority=priority,
        from_date=from_date,
        to_date=to_date,
        limit=limit,
        offset=offset
    )


@router.get("/stats", response_model=DeliveryStatsResponse)
async def get_stats(
    current_user: dict = Depends(require_sender),
    service: DeliveryLifecycleService = Depends(get_delivery_service)
):
    return await service.get_stats(current_user["user_id"])


@router.get("/track/{tracking_code}", response_model=PublicTrackingResponse)
async def track_delivery(
    tracking_code: str = Path(..., description="Public tracking code (DLV-XXXXX-XXXXX)"),
    service: DeliveryLifecycleService = Depends(get_delivery_service)
):
    """Public tracking by code. No authentication; contact details are redacted."""
    return await service.track_delivery(tracking_code)


@router.get("/{delivery_id}", response_model=DeliveryDetailResponse)
async def get_delivery(
    delivery_id: str = Path(..., description="Delivery ID"),
    current_user: dict = Depends(get_current_user),
    service: DeliveryLifecycleService = Depends(get_delivery_service)
):
    """Delivery details for its sender or assigned driver."""
    return await service.get_delivery(current_user["user_id"], delivery_id)


@router.post("/{delivery_id}/cancel", response_model=MessageResponse)
async def cancel_delivery(
    delivery_id: str = Path(..., description="Delivery ID"),
    request: Optional[CancelDeliveryRequest] = None,
    current_user: dict = Depends(get_current_user),
    service: DeliveryLifecycleService = Depends(get_delivery_service)
):
    """Cancel before pickup (sender or assigned driver)."""
    reason = request.reason if request else ""
    await service.cancel_delivery(delivery_id, current_user["user_id"], reason)
    return MessageResponse(message="Delivery cancelled")


@router.post("/{delivery_id}/rate", response_model=MessageResponse)
async def rate_delivery(
    request: RateDeliveryRequest,
    delivery_id: str = Path(..., description="Delivery ID"),
    current_user: dict = Depends(get_current_user),
    service: DeliveryLifecycleService = Depends(get_delivery_service)
):
    """Rate a delivered delivery, once per side."""
    await service.rate_delivery(delivery_id, current_user["user_id"], request.rating, request.feedback)
    return MessageResponse(message="Delivery rated")
