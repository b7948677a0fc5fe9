"""
Delivery Pydantic schemas.

Request models keep enum-valued fields as plain strings: the lifecycle
engine validates them so an unknown size or priority is a 400, not a 422.
None of the response models declare proof_pin, so it cannot be serialized.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List

from delivery_backend.app.models.delivery_enums import (
    DeliveryStatus, DeliveryPriority, PackageSize, ProofType, StopStatus
)


# Requests

class StopInput(BaseModel):
    """Intermediate stop as supplied by the sender (list order = stop order)."""
    latitude: float
    longitude: float
    address: str = Field(..., min_length=1, max_length=500)
    contact_name: Optional[str] = Field(None, max_length=200)
    contact_phone: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None


class DeliveryEstimateRequest(BaseModel):
    """Schema for requesting a fare estimate."""
    pickup_latitude: float
    pickup_longitude: float
    dropoff_latitude: float
    dropoff_longitude: float
    package_size: str = Field(..., description="envelope, small, medium, large or xlarge")
    priority: str = Field("standard", description="standard, express or scheduled")
    stops: List[StopInput] = Field(default_factory=list)


class CreateDeliveryRequest(DeliveryEstimateRequest):
    """Schema for creating a new delivery."""
    pickup_address: str = Field(..., min_length=1, max_length=500)
    pickup_contact: str = Field(..., min_length=1, max_length=200)
    pickup_phone: str = Field(..., min_length=1, max_length=50)
    pickup_notes: Optional[str] = None

    dropoff_address: str = Field(..., min_length=1, max_length=500)
    recipient_name: str = Field(..., min_length=1, max_length=200)
    recipient_phone: str = Field(..., min_length=1, max_length=50)
    dropoff_notes: Optional[str] = None

    package_description: Optional[str] = Field(None, max_length=500)
    weight_kg: Optional[float] = Field(None, gt=0)
    is_fragile: bool = False
    requires_signature: bool = False
    declared_value: Optional[float] = Field(None, ge=0)

    scheduled_pickup_at: Optional[datetime] = None
    scheduled_dropoff_at: Optional[datetime] = None


class ConfirmPickupRequest(BaseModel):
    notes: Optional[str] = None
    photo_url: Optional[str] = None


class ConfirmDeliveryRequest(BaseModel):
    """Proof of delivery submitted by the driver."""
    proof_type: str = Field(..., description="photo, signature, pin or contactless")
    pin: Optional[str] = None
    photo_url: Optional[str] = None
    signature_url: Optional[str] = None
    notes: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str


class CancelDeliveryRequest(BaseModel):
    reason: str = ""


class ReturnDeliveryRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class RateDeliveryRequest(BaseModel):
    rating: int
    feedback: Optional[str] = None


class StopStatusUpdateRequest(BaseModel):
    status: str
    photo_url: Optional[str] = None


# Responses

class DeliveryEstimateResponse(BaseModel):
    """Fare quote; all monetary values rounded half-up to 2 decimals."""
    estimated_distance_km: float
    estimated_duration_min: int
    base_fare: float
    size_surcharge: float
    priority_surcharge: float
    surge_multiplier: float
    total_estimate: float
    currency: str
    priority: str
    package_size: str


class DeliveryStopResponse(BaseModel):
    id: str
    delivery_id: str
    stop_order: int
    latitude: float
    longitude: float
    address: str
    contact_name: Optional[str]
    contact_phone: Optional[str]
    notes: Optional[str]
    status: StopStatus
    arrived_at: Optional[datetime]
    completed_at: Optional[datetime]
    proof_photo_url: Optional[str]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class TrackingEventResponse(BaseModel):
    id: str
    delivery_id: str
    driver_id: Optional[int]
    latitude: Optional[float]
    longitude: Optional[float]
    status: str
    timestamp: datetime

    class Config:
        from_attributes = True


class PublicTrackingEventResponse(BaseModel):
    """Tracking entry as shown to anyone holding the tracking code."""
    status: str
    timestamp: datetime

    class Config:
        from_attributes = True


class PublicDeliveryResponse(BaseModel):
    """
    Redacted projection for public tracking.

    Omits phone numbers, declared value, contact names and the proof PIN.
    """
    id: str
    tracking_code: str
    status: DeliveryStatus
    priority: DeliveryPriority
    package_size: PackageSize
    is_fragile: bool
    pickup_address: str
    dropoff_address: str
    estimated_distance_km: float
    estimated_duration_min: int
    proof_type: Optional[ProofType]
    scheduled_pickup_at: Optional[datetime]
    requested_at: datetime
    accepted_at: Optional[datetime]
    picked_up_at: Optional[datetime]
    delivered_at: Optional[datetime]
    cancelled_at: Optional[datetime]

    class Config:
        from_attributes = True


class DeliveryResponse(BaseModel):
    """Full delivery view for its sender and assigned driver."""
    id: str
    sender_id: int
    driver_id: Optional[int]
    status: DeliveryStatus
    priority: DeliveryPriority
    tracking_code: str

    pickup_latitude: float
    pickup_longitude: float
    pickup_address: str
    pickup_contact: str
    pickup_phone: str
    pickup_notes: Optional[str]

    dropoff_latitude: float
    dropoff_longitude: float
    dropoff_address: str
    recipient_name: str
    recipient_phone: str
    dropoff_notes: Optional[str]

    package_size: PackageSize
    package_description: Optional[str]
    weight_kg: Optional[float]
    is_fragile: bool
    requires_signature: bool
    declared_value: Optional[float]

    estimated_distance_km: float
    estimated_duration_min: int
    estimated_fare: float
    surge_multiplier: float
    final_fare: Optional[float]

    proof_type: Optional[ProofType]
    proof_photo_url: Optional[str]
    signature_url: Optional[str]

    scheduled_pickup_at: Optional[datetime]
    scheduled_dropoff_at: Optional[datetime]
    requested_at: datetime
    accepted_at: Optional[datetime]
    picked_up_at: Optional[datetime]
    delivered_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancel_reason: Optional[str]

    sender_rating: Optional[int]
    sender_feedback: Optional[str]
    driver_rating: Optional[int]
    driver_feedback: Optional[str]

    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class DeliveryDetailResponse(BaseModel):
    """Delivery with its stops and tracking history."""
    delivery: DeliveryResponse
    stops: List[DeliveryStopResponse] = []
    tracking: List[TrackingEventResponse] = []


class PublicTrackingResponse(BaseModel):
    delivery: PublicDeliveryResponse
    tracking: List[PublicTrackingEventResponse] = []


class DeliveryListResponse(BaseModel):
    """Schema for paginated delivery list."""
    deliveries: List[DeliveryResponse]
    total: int
    limit: int
    offset: int


class AvailableDeliveriesResponse(BaseModel):
    deliveries: List[DeliveryResponse]
    count: int


class DeliveryStatsResponse(BaseModel):
    total_deliveries: int
    completed_count: int
    cancelled_count: int
    in_progress_count: int
    average_rating: float
    total_spent: float
    average_delivery_min: float


class MessageResponse(BaseModel):
    message: str
