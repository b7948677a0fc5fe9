"""
Delivery database model.

The delivery is the aggregate root of the lifecycle: it owns its stops and
its tracking events.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, Enum, Text, CheckConstraint
from sqlalchemy.sql import func
from delivery_backend.app.db.session import Base
from delivery_backend.app.models.delivery_enums import (
    DeliveryStatus, DeliveryPriority, PackageSize, ProofType
)


def enum_values(enum_cls):
    """Persist enum values ("in_transit") rather than member names."""
    return [member.value for member in enum_cls]


class Delivery(Base):
    """
    Delivery model.

    A delivery is requested by a sender and fulfilled by exactly one driver.
    driver_id is set once by the atomic accept and never reassigned.
    proof_pin is server-held and never leaves the service in a response.
    """
    __tablename__ = "deliveries"

    id = Column(String(36), primary_key=True)

    # Participants
    sender_id = Column(Integer, nullable=False, index=True)
    driver_id = Column(Integer, nullable=True, index=True)

    # Lifecycle
    status = Column(
        Enum(DeliveryStatus, name="delivery_status", values_callable=enum_values),
        default=DeliveryStatus.REQUESTED, nullable=False, index=True
    )
    priority = Column(
        Enum(DeliveryPriority, name="delivery_priority", values_callable=enum_values),
        default=DeliveryPriority.STANDARD, nullable=False
    )
    tracking_code = Column(String(15), unique=True, nullable=False, index=True)

    # Pickup
    pickup_latitude = Column(Float, nullable=False)
    pickup_longitude = Column(Float, nullable=False)
    pickup_address = Column(String(500), nullable=False)
    pickup_contact = Column(String(200), nullable=False)
    pickup_phone = Column(String(50), nullable=False)
    pickup_notes = Column(Text, nullable=True)

    # Dropoff
    dropoff_latitude = Column(Float, nullable=False)
    dropoff_longitude = Column(Float, nullable=False)
    dropoff_address = Column(String(500), nullable=False)
    recipient_name = Column(String(200), nullable=False)
    recipient_phone = Column(String(50), nullable=False)
    dropoff_notes = Column(Text, nullable=True)

    # Package
    package_size = Column(
        Enum(PackageSize, name="package_size", values_callable=enum_values), nullable=False
    )
    package_description = Column(String(500), nullable=True)
    weight_kg = Column(Float, nullable=True)
    is_fragile = Column(Boolean, default=False, nullable=False)
    requires_signature = Column(Boolean, default=False, nullable=False)
    declared_value = Column(Float, nullable=True)

    # Economics
    estimated_distance_km = Column(Float, nullable=False)
    estimated_duration_min = Column(Integer, nullable=False)
    estimated_fare = Column(Float, nullable=False)
    surge_multiplier = Column(Float, default=1.0, nullable=False)
    final_fare = Column(Float, nullable=True)  # Set only on completion

    # Proof of delivery
    proof_pin = Column(String(4), nullable=True)
    proof_type = Column(
        Enum(ProofType, name="proof_type", values_callable=enum_values), nullable=True
    )
    proof_photo_url = Column(String(1000), nullable=True)
    signature_url = Column(String(1000), nullable=True)

    # Scheduling
    scheduled_pickup_at = Column(DateTime(timezone=True), nullable=True)
    scheduled_dropoff_at = Column(DateTime(timezone=True), nullable=True)

    # Lifecycle timestamps
    requested_at = Column(DateTime(timezone=True), nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    picked_up_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(Text, nullable=True)

    # Ratings (each side rates once)
    sender_rating = Column(Integer, nullable=True)
    sender_feedback = Column(Text, nullable=True)
    driver_rating = Column(Integer, nullable=True)
    driver_feedback = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("sender_rating IS NULL OR (sender_rating BETWEEN 1 AND 5)", name="ck_deliveries_sender_rating"),
        CheckConstraint("driver_rating IS NULL OR (driver_rating BETWEEN 1 AND 5)", name="ck_deliveries_driver_rating"),
    )

    def __repr__(self):
        return f"<Delivery(id={self.id}, code='{self.tracking_code}', status='{self.status.value}')>"
