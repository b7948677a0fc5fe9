"""
Delivery Tracking database model.

Append-only chain of custody for a delivery.
"""

from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime
from delivery_backend.app.db.session import Base


class DeliveryTracking(Base):
    """
    Tracking event model.

    Rows are inserted, never updated. Timestamp order is observation order.
    """
    __tablename__ = "delivery_tracking"

    id = Column(String(36), primary_key=True)

    delivery_id = Column(
        String(36), ForeignKey('deliveries.id', ondelete="CASCADE"), nullable=False, index=True
    )
    driver_id = Column(Integer, nullable=True)

    # Optional GPS fix at the time of the event
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    status = Column(String(500), nullable=False)  # Human-readable status text
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<DeliveryTracking(delivery_id={self.delivery_id}, status='{self.status}')>"
