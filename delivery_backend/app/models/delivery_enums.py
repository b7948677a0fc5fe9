"""
Delivery-related enumerations.
"""

import enum


class DeliveryStatus(str, enum.Enum):
    """
    Delivery status enumeration.

    Status flow:
        requested → accepted → (picking_up) → picked_up → in_transit → (arrived) → delivered
        requested / accepted / picking_up → cancelled
        in_transit / arrived → returned, arrived → failed
    """
    REQUESTED = "requested"  # Created by sender, awaiting a driver
    ACCEPTED = "accepted"  # Driver assigned
    PICKING_UP = "picking_up"  # Driver en route to pickup
    PICKED_UP = "picked_up"  # Package collected from sender
    IN_TRANSIT = "in_transit"  # En route to dropoff
    ARRIVED = "arrived"  # Driver at dropoff
    DELIVERED = "delivered"  # Proof of delivery accepted
    CANCELLED = "cancelled"
    RETURNED = "returned"  # Package returned to sender after pickup
    FAILED = "failed"  # Delivery attempt failed at dropoff


# Statuses in which the assigned driver holds the delivery
CLAIMED_STATUSES = (
    DeliveryStatus.ACCEPTED,
    DeliveryStatus.PICKING_UP,
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.ARRIVED,
)

TERMINAL_STATUSES = (
    DeliveryStatus.DELIVERED,
    DeliveryStatus.CANCELLED,
    DeliveryStatus.RETURNED,
    DeliveryStatus.FAILED,
)

# Statuses after the package has left the sender
POST_PICKUP_STATUSES = (
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.ARRIVED,
)


class PackageSize(str, enum.Enum):
    ENVELOPE = "envelope"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    XLARGE = "xlarge"


class DeliveryPriority(str, enum.Enum):
    STANDARD = "standard"
    EXPRESS = "express"
    SCHEDULED = "scheduled"


# Ranking used when listing available deliveries
PRIORITY_RANK = {
    DeliveryPriority.EXPRESS: 1,
    DeliveryPriority.STANDARD: 2,
    DeliveryPriority.SCHEDULED: 3,
}


class ProofType(str, enum.Enum):
    """Proof-of-delivery kinds accepted at completion."""
    PHOTO = "photo"
    SIGNATURE = "signature"
    PIN = "pin"
    CONTACTLESS = "contactless"  # Left at door, photo required


class StopStatus(str, enum.Enum):
    """Intermediate stop status enumeration."""
    PENDING = "pending"
    ARRIVED = "arrived"
    COMPLETED = "completed"
