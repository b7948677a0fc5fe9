"""
Delivery status graph.

Each status maps to the statuses reachable in one hop. Terminal statuses
have no outgoing edges.
"""

from typing import Dict, FrozenSet

from delivery_backend.app.models.delivery_enums import DeliveryStatus

VALID_TRANSITIONS: Dict[DeliveryStatus, FrozenSet[DeliveryStatus]] = {
    DeliveryStatus.REQUESTED: frozenset({
        DeliveryStatus.ACCEPTED,
        DeliveryStatus.CANCELLED,
    }),
    DeliveryStatus.ACCEPTED: frozenset({
        DeliveryStatus.PICKING_UP,
        DeliveryStatus.PICKED_UP,
        DeliveryStatus.CANCELLED,
    }),
    DeliveryStatus.PICKING_UP: frozenset({
        DeliveryStatus.PICKED_UP,
        DeliveryStatus.CANCELLED,
    }),
    DeliveryStatus.PICKED_UP: frozenset({
        DeliveryStatus.IN_TRANSIT,
    }),
    DeliveryStatus.IN_TRANSIT: frozenset({
        DeliveryStatus.ARRIVED,
        DeliveryStatus.DELIVERED,
        DeliveryStatus.RETURNED,
    }),
    DeliveryStatus.ARRIVED: frozenset({
        DeliveryStatus.DELIVERED,
        DeliveryStatus.RETURNED,
        DeliveryStatus.FAILED,
    }),
    DeliveryStatus.DELIVERED: frozenset(),
    DeliveryStatus.CANCELLED: frozenset(),
    DeliveryStatus.RETURNED: frozenset(),
    DeliveryStatus.FAILED: frozenset(),
}


def is_valid_transition(current: DeliveryStatus, target: DeliveryStatus) -> bool:
    """Return True if target is reachable from current in one hop."""
    return target in VALID_TRANSITIONS.get(current, frozenset())


def is_terminal(status: DeliveryStatus) -> bool:
    return not VALID_TRANSITIONS.get(status)
