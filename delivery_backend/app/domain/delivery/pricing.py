"""
Delivery Pricing Calculator (Domain Logic).

Pure fare computation: geography + package size + priority -> quote.
No I/O; deterministic for a given PricingConfig.
"""

import math
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence, Tuple

from delivery_backend.app.core.config import settings
from delivery_backend.app.models.delivery_enums import PackageSize, DeliveryPriority

EARTH_RADIUS_KM = 6371.0
AVERAGE_SPEED_KMH = 30.0
HANDLING_BUFFER_MIN = 10  # pickup + dropoff
PER_STOP_MIN = 3


@dataclass(frozen=True)
class PricingConfig:
    """Tariff used by the calculator."""
    base_fare_per_km: float = 1.2
    minimum_fare: float = 3.0
    express_premium: float = 1.5
    currency: str = "USD"
    size_surcharges: Dict[str, float] = field(default_factory=lambda: {
        PackageSize.ENVELOPE.value: 0.0,
        PackageSize.SMALL.value: 1.0,
        PackageSize.MEDIUM.value: 3.0,
        PackageSize.LARGE.value: 8.0,
        PackageSize.XLARGE.value: 15.0,
    })

    @classmethod
    def from_settings(cls) -> "PricingConfig":
        return cls(
            base_fare_per_km=settings.base_fare_per_km,
            minimum_fare=settings.minimum_fare,
            express_premium=settings.express_premium,
            currency=settings.currency,
            size_surcharges=dict(settings.size_surcharges),
        )


@dataclass(frozen=True)
class FareEstimate:
    distance_km: float
    duration_min: int
    base_fare: float
    size_surcharge: float
    priority_surcharge: float
    surge_multiplier: float
    total: float
    currency: str
    priority: DeliveryPriority
    package_size: PackageSize


def round_money(value: float) -> float:
    """Round half-up to 2 decimals (float round() is banker's on ties)."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2)**2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2)**2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def route_distance(points: Sequence[Tuple[float, float]]) -> float:
    """Sum of haversine legs along an ordered list of (lat, lng) points."""
    return sum(
        haversine_distance(a[0], a[1], b[0], b[1])
        for a, b in zip(points, points[1:])
    )


def surge_multiplier() -> float:
    # Placeholder for a demand-based surge calculator
    return 1.0


def calculate_estimate(
    pickup: Tuple[float, float],
    dropoff: Tuple[float, float],
    package_size: PackageSize,
    priority: DeliveryPriority,
    stops: Optional[List[Tuple[float, float]]] = None,
    config: Optional[PricingConfig] = None,
) -> FareEstimate:
    """
    Compute a fare quote.

    With intermediate stops the distance is the sum of the legs
    pickup -> stop 1 -> ... -> stop n -> dropoff, replacing the direct distance.

    Args:
        pickup: (lat, lng) of the pickup
        dropoff: (lat, lng) of the dropoff
        package_size: Package size class
        priority: Delivery priority
        stops: Ordered (lat, lng) of intermediate stops
        config: Tariff; defaults to the configured settings

    Returns:
        FareEstimate with monetary values rounded half-up to 2 decimals
    """
    config = config or PricingConfig.from_settings()
    stops = stops or []

    distance = route_distance([pickup, *stops, dropoff])
    duration = math.ceil(distance / AVERAGE_SPEED_KMH * 60) + HANDLING_BUFFER_MIN + PER_STOP_MIN * len(stops)

    base_fare = max(distance * config.base_fare_per_km, config.minimum_fare)
    size_surcharge = config.size_surcharges.get(package_size.value, 0.0)
    priority_surcharge = 0.0
    if priority == DeliveryPriority.EXPRESS:
        priority_surcharge = base_fare * (config.express_premium - 1)

    surge = surge_multiplier()
    total = (base_fare + size_surcharge + priority_surcharge) * surge

    return FareEstimate(
        distance_km=round_money(distance),
        duration_min=int(duration),
        base_fare=round_money(base_fare),
        size_surcharge=round_money(size_surcharge),
        priority_surcharge=round_money(priority_surcharge),
        surge_multiplier=surge,
        total=round_money(total),
        currency=config.currency,
        priority=priority,
        package_size=package_size,
    )
