"""
Driver Delivery API Endpoints.

Discovery, claiming and execution of deliveries by drivers.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query

from delivery_backend.app.core.dependencies import get_delivery_service
from delivery_backend.app.core.guards import require_driver
from delivery_backend.app.domain.delivery.lifecycle_service import DeliveryLifecycleService
from delivery_backend.app.schemas.delivery import (
    AvailableDeliveriesResponse,
    ConfirmDeliveryRequest,
    ConfirmPickupRequest,
    DeliveryDetailResponse,
    DeliveryListResponse,
    MessageResponse,
    ReturnDeliveryRequest,
    StatusUpdateRequest,
    StopStatusUpdateRequest,
)

router = APIRouter(prefix="/driver/deliveries", tags=["Driver - Deliveries"])


@router.get("/available", response_model=AvailableDeliveriesResponse)
async def list_available_deliveries(
    latitude: float = Query(..., description="Driver latitude"),
    longitude: float = Query(..., description="Driver longitude"),
    current_user: dict = Depends(require_driver),
    service: DeliveryLifecycleService = Depends(get_delivery_service)
):
    """Requested deliveries near the driver, express first."""
    return await service.get_available_deliveries(latitude, longitude)


@router.get("/active", response_model=DeliveryDetailResponse)
async def get_active_delivery(
    current_user: dict = Depends(require_driver),
    service: DeliveryLifecycleService = Depends(get_delivery_service)
):
    return await service.get_active_delivery(current_user["user_id"])


@router.get("", response_model=DeliveryListResponse)
async def list_driver_deliveries(
    limit: Optional[int] = Query(None, ge=1),
    offset: Optional[int] = Query(None, ge=0),
    current_user: dict = Depends(require_driver),
    service: DeliveryLifecycleService = Depends(get_delivery_service)
):
    """Deliveries assigned to the caller, newest first."""
    return await service.get_driver_deliveries(current_user["user_id"], limit=limit, offset=offset)


@router.post("/{delivery_id}/accept", response_model=DeliveryDetailResponse)
async def accept_delivery(
    delivery_id: str = Path(..., description="Delivery ID"),
    current_user: dict = Depends(require_driver),
    service: DeliveryLifecycleService = Depends(get_delivery_service)
):
    """
    Accept a requested delivery.

    Returns 409 if the caller already has an active delivery or another
    driver won the race.
    """
    return await service.accept_delivery(delivery_id, current_user["user_id"])


@router.post("/{delivery_id}/pickup", response_model=MessageResponse)
async def confirm_pickup(
    delivery_id: str = Path(..., description="Delivery ID"),
    request: Optional[ConfirmPickupRequest] = None,
    current_user: dict = Depends(require_driver),
    service: DeliveryLifecycleService = Depends(get_delivery_service)
):
    await service.confirm_pickup(delivery_id, current_user["user_id"], request or ConfirmPickupRequest())
    return MessageResponse(message="Pickup confirmed")


@router.post("/{delivery_id}/status", response_model=MessageResponse)
async def update_status(
    request: StatusUpdateRequest,
    delivery_id: str = Path(..., description="Delivery ID"),
    current_user: dict = Depends(require_driver),
    service: DeliveryLifecycleService = Depends(get_delivery_service)
):
    await service.update_status(delivery_id, current_user["user_id"], request.status)
    return MessageResponse(message="Status updated")


@router.post("/{delivery_id}/deliver", response_model=MessageResponse)
async def confirm_delivery(
    request: ConfirmDeliveryRequest,
    delivery_id: str = Path(..., description="Delivery ID"),
    current_user: dict = Depends(require_driver),
    service: DeliveryLifecycleService = Depends(get_delivery_service)
):
    """Complete the delivery with proof (photo, signature, PIN or contactless)."""
    await service.confirm_delivery(delivery_id, current_user["user_id"], request)
    return MessageResponse(message="Delivery confirmed")


@router.post("/{delivery_id}/return", response_model=MessageResponse)
async def return_delivery(
    request: ReturnDeliveryRequest,
    delivery_id: str = Path(..., description="Delivery ID"),
    current_user: dict = Depends(require_driver),
    service: DeliveryLifecycleService = Depends(get_delivery_service)
):
    await service.return_delivery(delivery_id, current_user["user_id"], request.reason)
    return MessageResponse(message="Return initiated")


@router.post("/{delivery_id}/stops/{stop_id}/status", response_model=MessageResponse)
async def update_stop_status(
    request: StopStatusUpdateRequest,
    delivery_id: str = Path(..., description="Delivery ID"),
    stop_id: str = Path(..., description="Stop ID"),
    current_user: dict = Depends(require_driver),
    service: DeliveryLifecycleService = Depends(get_delivery_service)
):
    await service.update_stop_status(
        delivery_id, stop_id, current_user["user_id"], request.status, request.photo_url
    )
    return MessageResponse(message="Stop status updated")
