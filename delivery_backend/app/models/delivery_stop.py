"""
Delivery Stop database model.

Stops are ordered intermediate waypoints between pickup and dropoff.
"""

from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Enum, Text, UniqueConstraint
from sqlalchemy.sql import func
from delivery_backend.app.db.session import Base
from delivery_backend.app.models.delivery import enum_values
from delivery_backend.app.models.delivery_enums import StopStatus


class DeliveryStop(Base):
    """
    Delivery Stop model.

    stop_order is 1-based and dense per delivery (1, 2, 3, ...); the order
    of the sender's request defines it. Lifetime equals the delivery's.
    """
    __tablename__ = "delivery_stops"

    id = Column(String(36), primary_key=True)

    delivery_id = Column(
        String(36), ForeignKey('deliveries.id', ondelete="CASCADE"), nullable=False, index=True
    )
    stop_order = Column(Integer, nullable=False)

    # Location and contact
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    address = Column(String(500), nullable=False)
    contact_name = Column(String(200), nullable=True)
    contact_phone = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(
        Enum(StopStatus, name="stop_status", values_callable=enum_values),
        default=StopStatus.PENDING, nullable=False
    )

    arrived_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    proof_photo_url = Column(String(1000), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("delivery_id", "stop_order", name="uq_delivery_stops_order"),
    )

    def __repr__(self):
        return f"<DeliveryStop(id={self.id}, delivery_id={self.delivery_id}, order={self.stop_order}, status='{self.status.value}')>"
