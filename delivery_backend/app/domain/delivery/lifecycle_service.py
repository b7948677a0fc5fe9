"""
Delivery Lifecycle Service (Domain Logic).

Orchestrates every delivery operation:
1. Authorize the actor against the delivery
2. Validate inputs and preconditions
3. Apply the change through one conditional repository update
4. Append a tracking event
5. Emit a best-effort lifecycle event

The service holds no mutable state of its own beyond the pricing config;
all races are settled by the repository's conditional updates.
"""

import logging
import math
from datetime import datetime
from typing import List, Optional, Tuple, Type

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from delivery_backend.app.core.config import settings
from delivery_backend.app.core.exceptions import (
    BadRequestError,
    ConflictError,
    InsufficientPermissionsError,
    InternalError,
    ResourceNotFoundError,
)
from delivery_backend.app.domain.delivery import events
from delivery_backend.app.domain.delivery.events import DeliveryEventPublisher
from delivery_backend.app.domain.delivery.identity import (
    generate_id,
    generate_proof_pin,
    generate_tracking_code,
    verify_pin,
)
from delivery_backend.app.domain.delivery.pricing import (
    FareEstimate,
    PricingConfig,
    calculate_estimate,
)
from delivery_backend.app.domain.delivery.repository import DeliveryRepository
from delivery_backend.app.domain.delivery.transitions import is_valid_transition
from delivery_backend.app.models.delivery import Delivery
from delivery_backend.app.models.delivery_enums import (
    DeliveryPriority,
    DeliveryStatus,
    PackageSize,
    POST_PICKUP_STATUSES,
    ProofType,
    StopStatus,
)
from delivery_backend.app.models.delivery_stop import DeliveryStop
from delivery_backend.app.models.delivery_tracking import DeliveryTracking
from delivery_backend.app.schemas.delivery import (
    AvailableDeliveriesResponse,
    ConfirmDeliveryRequest,
    ConfirmPickupRequest,
    CreateDeliveryRequest,
    DeliveryDetailResponse,
    DeliveryEstimateRequest,
    DeliveryEstimateResponse,
    DeliveryListResponse,
    DeliveryResponse,
    DeliveryStatsResponse,
    DeliveryStopResponse,
    PublicDeliveryResponse,
    PublicTrackingEventResponse,
    PublicTrackingResponse,
    TrackingEventResponse,
)

logger = logging.getLogger(__name__)

# Targets that have a dedicated operation carrying their side effects
DEDICATED_TARGETS = {
    DeliveryStatus.DELIVERED: "use delivery confirmation to complete a delivery",
    DeliveryStatus.RETURNED: "use return to send a package back to the sender",
    DeliveryStatus.CANCELLED: "use cancel to cancel a delivery",
}


def parse_enum(enum_cls: Type, value, field_name: str):
    """Coerce a raw value into enum_cls or raise BadRequestError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise BadRequestError(
            f"invalid {field_name}: {value}",
            details={"allowed": [member.value for member in enum_cls]}
        )


def validate_coordinates(latitude: float, longitude: float):
    if (
        latitude is None or longitude is None
        or not math.isfinite(latitude) or not math.isfinite(longitude)
        or not -90 <= latitude <= 90 or not -180 <= longitude <= 180
    ):
        # Non-finite values cannot be echoed back in a JSON body
        raise BadRequestError("invalid coordinates")


class DeliveryLifecycleService:
    """Lifecycle engine for deliveries. One instance per request."""

    def __init__(
        self,
        repository: DeliveryRepository,
        publisher: Optional[DeliveryEventPublisher] = None,
        pricing_config: Optional[PricingConfig] = None
    ):
        self.repository = repository
        self.publisher = publisher
        self.pricing_config = pricing_config or PricingConfig.from_settings()

    def set_pricing_config(self, config: PricingConfig):
        self.pricing_config = config

    # Helpers

    async def _load(self, delivery_id: str) -> Delivery:
        delivery = await self.repository.get_by_id(delivery_id)
        if not delivery:
            raise ResourceNotFoundError("delivery not found", details={"delivery_id": delivery_id})
        return delivery

    @staticmethod
    def _require_driver(delivery: Delivery, driver_id: int):
        if delivery.driver_id is None or delivery.driver_id != driver_id:
            raise InsufficientPermissionsError("not your delivery")

    async def _track(
        self,
        delivery_id: str,
        driver_id: Optional[int],
        status_text: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None
    ):
        """Append a tracking event; a failure here never undoes the state change."""
        event = DeliveryTracking(
            id=generate_id(),
            delivery_id=delivery_id,
            driver_id=driver_id,
            latitude=latitude,
            longitude=longitude,
            status=status_text,
            timestamp=datetime.utcnow(),
        )
        try:
            await self.repository.append_tracking_event(event)
        except SQLAlchemyError as exc:
            logger.warning("Failed to record tracking event for %s: %s", delivery_id, exc)

    def _emit(self, subject: str, event_type: str, data: dict):
        if self.publisher is not None:
            self.publisher.publish(subject, event_type, data)

    async def _details(self, delivery: Delivery, include_tracking: bool = True) -> DeliveryDetailResponse:
        stops = await self.repository.list_stops(delivery.id)
        tracking = await self.repository.list_tracking_events(delivery.id) if include_tracking else []
        return DeliveryDetailResponse(
            delivery=DeliveryResponse.model_validate(delivery),
            stops=[DeliveryStopResponse.model_validate(stop) for stop in stops],
            tracking=[TrackingEventResponse.model_validate(event) for event in tracking],
        )

    @staticmethod
    def _page(limit: Optional[int], offset: Optional[int]) -> Tuple[int, int]:
        if not limit or limit <= 0:
            limit = settings.default_page_limit
        limit = min(limit, settings.max_page_limit)
        if not offset or offset < 0:
            offset = 0
        return limit, offset

    def _quote(self, request: DeliveryEstimateRequest) -> FareEstimate:
        validate_coordinates(request.pickup_latitude, request.pickup_longitude)
        validate_coordinates(request.dropoff_latitude, request.dropoff_longitude)
        for stop in request.stops:
            validate_coordinates(stop.latitude, stop.longitude)

        package_size = parse_enum(PackageSize, request.package_size, "package size")
        priority = parse_enum(DeliveryPriority, request.priority, "priority")

        return calculate_estimate(
            pickup=(request.pickup_latitude, request.pickup_longitude),
            dropoff=(request.dropoff_latitude, request.dropoff_longitude),
            package_size=package_size,
            priority=priority,
            stops=[(stop.latitude, stop.longitude) for stop in request.stops],
            config=self.pricing_config,
        )

    # Quotes and creation

    async def get_estimate(self, request: DeliveryEstimateRequest) -> DeliveryEstimateResponse:
        """Price a delivery without persisting anything."""
        estimate = self._quote(request)
        return DeliveryEstimateResponse(
            estimated_distance_km=estimate.distance_km,
            estimated_duration_min=estimate.duration_min,
            base_fare=estimate.base_fare,
            size_surcharge=estimate.size_surcharge,
            priority_surcharge=estimate.priority_surcharge,
            surge_multiplier=estimate.surge_multiplier,
            total_estimate=estimate.total,
            currency=estimate.currency,
            priority=estimate.priority.value,
            package_size=estimate.package_size.value,
        )

    def _build_delivery(
        self,
        sender_id: int,
        request: CreateDeliveryRequest,
        estimate: FareEstimate
    ) -> Tuple[Delivery, List[DeliveryStop]]:
        now = datetime.utcnow()
        delivery = Delivery(
            id=generate_id(),
            sender_id=sender_id,
            driver_id=None,
            status=DeliveryStatus.REQUESTED,
            priority=estimate.priority,
            tracking_code=generate_tracking_code(),
            pickup_latitude=request.pickup_latitude,
            pickup_longitude=request.pickup_longitude,
            pickup_address=request.pickup_address,
            pickup_contact=request.pickup_contact,
            pickup_phone=request.pickup_phone,
            pickup_notes=request.pickup_notes,
            dropoff_latitude=request.dropoff_latitude,
            dropoff_longitude=request.dropoff_longitude,
            dropoff_address=request.dropoff_address,
            recipient_name=request.recipient_name,
            recipient_phone=request.recipient_phone,
            dropoff_notes=request.dropoff_notes,
            package_size=estimate.package_size,
            package_description=request.package_description,
            weight_kg=request.weight_kg,
            is_fragile=request.is_fragile,
            requires_signature=request.requires_signature,
            declared_value=request.declared_value,
            estimated_distance_km=estimate.distance_km,
            estimated_duration_min=estimate.duration_min,
            estimated_fare=estimate.total,
            surge_multiplier=estimate.surge_multiplier,
            final_fare=None,
            proof_pin=generate_proof_pin(),
            scheduled_pickup_at=request.scheduled_pickup_at,
            scheduled_dropoff_at=request.scheduled_dropoff_at,
            requested_at=now,
            created_at=now,
            updated_at=now,
        )
        stops = [
            DeliveryStop(
                id=generate_id(),
                delivery_id=delivery.id,
                stop_order=order,
                latitude=stop.latitude,
                longitude=stop.longitude,
                address=stop.address,
                contact_name=stop.contact_name,
                contact_phone=stop.contact_phone,
                notes=stop.notes,
                status=StopStatus.PENDING,
                created_at=now,
            )
            for order, stop in enumerate(request.stops, start=1)
        ]
        return delivery, stops

    async def create_delivery(self, sender_id: int, request: CreateDeliveryRequest) -> DeliveryDetailResponse:
        """
        Create a delivery request for a sender.

        A tracking-code collision is retried with a freshly minted code up to
        the configured number of retries.

        Raises:
            BadRequestError: Invalid package size, priority or coordinates
            InternalError: No unique tracking code could be allocated
        """
        estimate = self._quote(request)

        max_attempts = settings.tracking_code_max_retries + 1
        for attempt in range(1, max_attempts + 1):
            delivery, stops = self._build_delivery(sender_id, request, estimate)
            try:
                await self.repository.create_delivery(delivery, stops)
                break
            except IntegrityError as exc:
                logger.warning(
                    "Tracking code collision creating delivery (attempt %d/%d): %s",
                    attempt, max_attempts, exc.__class__.__name__
                )
        else:
            raise InternalError("failed to allocate a unique tracking code")

        logger.info(
            "Delivery %s created by sender %s (%s, %.2f km, fare %.2f)",
            delivery.id, sender_id, delivery.tracking_code,
            delivery.estimated_distance_km, delivery.estimated_fare
        )

        self._emit(events.SUBJECT_REQUESTED, events.EVENT_REQUESTED, {
            "delivery_id": delivery.id,
            "sender_id": sender_id,
            "pickup_latitude": delivery.pickup_latitude,
            "pickup_longitude": delivery.pickup_longitude,
            "dropoff_latitude": delivery.dropoff_latitude,
            "dropoff_longitude": delivery.dropoff_longitude,
            "package_size": delivery.package_size.value,
            "priority": delivery.priority.value,
            "estimated_fare": delivery.estimated_fare,
            "requested_at": delivery.requested_at,
        })

        return DeliveryDetailResponse(
            delivery=DeliveryResponse.model_validate(delivery),
            stops=[DeliveryStopResponse.model_validate(stop) for stop in stops],
            tracking=[],
        )

    # Reads

    async def get_delivery(self, actor_id: int, delivery_id: str) -> DeliveryDetailResponse:
        """Full delivery with stops and tracking, for its sender or assigned driver."""
        delivery = await self._load(delivery_id)
        if delivery.sender_id != actor_id and delivery.driver_id != actor_id:
            raise InsufficientPermissionsError("not authorized to view this delivery")
        return await self._details(delivery)

    async def track_delivery(self, tracking_code: str) -> PublicTrackingResponse:
        """Public, redacted view by tracking code."""
        delivery = await self.repository.get_by_tracking_code(tracking_code)
        if not delivery:
            raise ResourceNotFoundError("delivery not found")

        tracking = await self.repository.list_tracking_events(delivery.id)
        return PublicTrackingResponse(
            delivery=PublicDeliveryResponse.model_validate(delivery),
            tracking=[PublicTrackingEventResponse.model_validate(event) for event in tracking],
        )

    async def get_active_delivery(self, driver_id: int) -> DeliveryDetailResponse:
        delivery = await self.repository.get_active_for_driver(driver_id)
        if not delivery:
            raise ResourceNotFoundError("no active delivery")
        return await self._details(delivery)

    # Driver lifecycle

    async def accept_delivery(self, delivery_id: str, driver_id: int) -> DeliveryDetailResponse:
        """
        Claim a requested delivery.

        The active-delivery preflight keeps a driver to one claimed delivery;
        the conditional update decides the winner between racing drivers.

        Raises:
            ConflictError: Driver already busy, or the delivery was taken
            ResourceNotFoundError: Unknown delivery
        """
        active = await self.repository.get_active_for_driver(driver_id)
        if active is not None:
            raise ConflictError(
                "you already have an active delivery",
                details={"active_delivery_id": active.id}
            )

        accepted = await self.repository.atomic_accept(delivery_id, driver_id)
        if not accepted:
            if await self.repository.get_by_id(delivery_id) is None:
                raise ResourceNotFoundError("delivery not found", details={"delivery_id": delivery_id})
            raise ConflictError("delivery already accepted by another driver")

        delivery = await self._load(delivery_id)
        logger.info("Delivery %s accepted by driver %s", delivery_id, driver_id)

        await self._track(delivery_id, driver_id, "Driver accepted delivery")
        self._emit(events.SUBJECT_ACCEPTED, events.EVENT_ACCEPTED, {
            "delivery_id": delivery_id,
            "driver_id": driver_id,
            "sender_id": delivery.sender_id,
            "accepted_at": delivery.accepted_at,
        })

        return await self._details(delivery)

    async def update_status(self, delivery_id: str, driver_id: int, new_status) -> DeliveryStatus:
        """
        Move a delivery one hop along the status graph.

        Completion, return and cancellation are refused here because their
        side effects (proof, final fare, reasons) live in their own operations.

        Returns:
            The new status
        """
        target = parse_enum(DeliveryStatus, new_status, "status")
        delivery = await self._load(delivery_id)
        self._require_driver(delivery, driver_id)

        current = delivery.status
        if not is_valid_transition(current, target):
            raise BadRequestError(f"cannot transition from {current.value} to {target.value}")
        if target in DEDICATED_TARGETS:
            raise BadRequestError(DEDICATED_TARGETS[target])

        updated = await self.repository.update_status(
            delivery_id, driver_id, target, expected_status=current
        )
        if not updated:
            raise ConflictError("delivery status changed concurrently, reload and retry")

        logger.info("Delivery %s: %s -> %s", delivery_id, current.value, target.value)
        await self._track(delivery_id, driver_id, f"Status changed to {target.value}")
        return target

    async def confirm_pickup(self, delivery_id: str, driver_id: int, request: ConfirmPickupRequest):
        delivery = await self._load(delivery_id)
        self._require_driver(delivery, driver_id)

        current = delivery.status
        if current not in (DeliveryStatus.PICKING_UP, DeliveryStatus.ACCEPTED):
            raise BadRequestError("delivery must be in picking_up or accepted status")

        updated = await self.repository.update_status(
            delivery_id, driver_id, DeliveryStatus.PICKED_UP, expected_status=current
        )
        if not updated:
            raise ConflictError("delivery status changed concurrently, reload and retry")

        delivery = await self._load(delivery_id)
        logger.info("Delivery %s picked up by driver %s", delivery_id, driver_id)

        status_text = "Package picked up from sender"
        if request.notes:
            status_text += " - " + request.notes
        await self._track(delivery_id, driver_id, status_text)

        self._emit(events.SUBJECT_PICKED_UP, events.EVENT_PICKED_UP, {
            "delivery_id": delivery_id,
            "driver_id": driver_id,
            "sender_id": delivery.sender_id,
            "picked_up_at": delivery.picked_up_at,
        })

    async def confirm_delivery(self, delivery_id: str, driver_id: int, request: ConfirmDeliveryRequest):
        """
        Complete a delivery against proof of delivery.

        Raises:
            BadRequestError: Missing or wrong proof (signature, PIN, photo)
            ConflictError: Delivery no longer in transit/arrived
        """
        proof_type = parse_enum(ProofType, request.proof_type, "proof type")
        delivery = await self._load(delivery_id)
        self._require_driver(delivery, driver_id)

        if delivery.requires_signature and proof_type != ProofType.SIGNATURE:
            raise BadRequestError("this delivery requires a signature")

        if proof_type == ProofType.PIN:
            if not request.pin or not verify_pin(delivery.proof_pin, request.pin):
                logger.warning("Incorrect delivery PIN for %s from driver %s", delivery_id, driver_id)
                raise BadRequestError("incorrect delivery PIN")

        if proof_type in (ProofType.PHOTO, ProofType.CONTACTLESS) and not request.photo_url:
            raise BadRequestError("photo proof is required")

        if proof_type == ProofType.SIGNATURE and not request.signature_url:
            raise BadRequestError("signature is required")

        final_fare = delivery.estimated_fare

        completed = await self.repository.atomic_complete(
            delivery_id, driver_id, proof_type,
            request.photo_url, request.signature_url, final_fare
        )
        if not completed:
            raise ConflictError("delivery already completed or not in transit")

        delivery = await self._load(delivery_id)
        logger.info("Delivery %s delivered by driver %s (proof: %s)", delivery_id, driver_id, proof_type.value)
        await self._track(delivery_id, driver_id, f"Delivered - proof: {proof_type.value}")

        self._emit(events.SUBJECT_COMPLETED, events.EVENT_COMPLETED, {
            "delivery_id": delivery_id,
            "driver_id": driver_id,
            "sender_id": delivery.sender_id,
            "fare_amount": final_fare,
            "distance_km": delivery.estimated_distance_km,
            "completed_at": delivery.delivered_at,
        })

    async def cancel_delivery(self, delivery_id: str, actor_id: int, reason: str = ""):
        """
        Cancel before pickup, by the sender or the assigned driver.

        After pickup a package can only be returned.
        """
        delivery = await self._load(delivery_id)

        is_sender = delivery.sender_id == actor_id
        is_driver = delivery.driver_id is not None and delivery.driver_id == actor_id
        if not is_sender and not is_driver:
            raise InsufficientPermissionsError("not authorized to cancel")

        if delivery.status in POST_PICKUP_STATUSES:
            if is_driver:
                raise BadRequestError("cannot cancel after package pickup - use return instead")
            raise BadRequestError("cannot cancel after package pickup")

        cancelled = await self.repository.cancel(delivery_id, reason)
        if not cancelled:
            raise ConflictError("delivery already completed or cancelled")

        delivery = await self._load(delivery_id)
        cancelled_by = "driver" if is_driver else "sender"
        logger.info("Delivery %s cancelled by %s %s", delivery_id, cancelled_by, actor_id)

        status_text = f"Delivery cancelled by {cancelled_by}"
        if reason:
            status_text += ": " + reason
        await self._track(delivery_id, delivery.driver_id, status_text)

        self._emit(events.SUBJECT_CANCELLED, events.EVENT_CANCELLED, {
            "delivery_id": delivery_id,
            "sender_id": delivery.sender_id,
            "driver_id": delivery.driver_id,
            "cancelled_by": cancelled_by,
            "reason": reason,
            "cancelled_at": delivery.cancelled_at,
        })

    async def return_delivery(self, delivery_id: str, driver_id: int, reason: str):
        delivery = await self._load(delivery_id)
        self._require_driver(delivery, driver_id)

        if delivery.status not in (DeliveryStatus.IN_TRANSIT, DeliveryStatus.ARRIVED):
            raise BadRequestError("can only return packages in transit or arrived")

        returned = await self.repository.return_delivery(delivery_id, driver_id, reason)
        if not returned:
            raise ConflictError("delivery is no longer in transit or arrived")

        logger.info("Delivery %s returned by driver %s", delivery_id, driver_id)
        await self._track(delivery_id, driver_id, "Package being returned to sender: " + reason)

    async def rate_delivery(self, delivery_id: str, actor_id: int, rating: int, feedback: Optional[str] = None):
        """Record the sender's or the driver's rating (1-5), once per side."""
        delivery = await self._load(delivery_id)

        is_sender = delivery.sender_id == actor_id
        is_driver = delivery.driver_id is not None and delivery.driver_id == actor_id
        if not is_sender and not is_driver:
            raise InsufficientPermissionsError("not part of this delivery")

        if delivery.status != DeliveryStatus.DELIVERED:
            raise BadRequestError("can only rate completed deliveries")

        if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
            raise BadRequestError("rating must be between 1 and 5")

        if is_sender:
            rated = await self.repository.rate_by_sender(delivery_id, rating, feedback)
        else:
            rated = await self.repository.rate_by_driver(delivery_id, rating, feedback)

        if not rated:
            raise BadRequestError("delivery already rated")

        logger.info("Delivery %s rated %d by %s", delivery_id, rating, "sender" if is_sender else "driver")

    async def update_stop_status(
        self,
        delivery_id: str,
        stop_id: str,
        driver_id: int,
        status,
        photo_url: Optional[str] = None
    ) -> StopStatus:
        stop_status = parse_enum(StopStatus, status, "stop status")
        delivery = await self._load(delivery_id)
        self._require_driver(delivery, driver_id)

        updated = await self.repository.update_stop_status(delivery_id, stop_id, stop_status, photo_url)
        if not updated:
            raise ResourceNotFoundError("stop not found", details={"stop_id": stop_id})

        logger.info("Delivery %s stop %s -> %s", delivery_id, stop_id, stop_status.value)
        return stop_status

    # Listings and stats

    async def get_my_deliveries(
        self,
        sender_id: int,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> DeliveryListResponse:
        limit, offset = self._page(limit, offset)
        status_filter = parse_enum(DeliveryStatus, status, "status") if status else None
        priority_filter = parse_enum(DeliveryPriority, priority, "priority") if priority else None

        deliveries, total = await self.repository.list_for_sender(
            sender_id,
            status=status_filter,
            priority=priority_filter,
            from_date=from_date,
            to_date=to_date,
            limit=limit,
            offset=offset
        )
        return DeliveryListResponse(
            deliveries=[DeliveryResponse.model_validate(d) for d in deliveries],
            total=total,
            limit=limit,
            offset=offset
        )

    async def get_driver_deliveries(
        self,
        driver_id: int,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> DeliveryListResponse:
        limit, offset = self._page(limit, offset)
        deliveries, total = await self.repository.list_for_driver(driver_id, limit=limit, offset=offset)
        return DeliveryListResponse(
            deliveries=[DeliveryResponse.model_validate(d) for d in deliveries],
            total=total,
            limit=limit,
            offset=offset
        )

    async def get_available_deliveries(self, latitude: float, longitude: float) -> AvailableDeliveriesResponse:
        """Requested deliveries with a pickup within the configured radius."""
        validate_coordinates(latitude, longitude)
        deliveries = await self.repository.list_available(
            latitude, longitude,
            radius_km=settings.available_radius_km,
            limit=settings.available_limit
        )
        return AvailableDeliveriesResponse(
            deliveries=[DeliveryResponse.model_validate(d) for d in deliveries],
            count=len(deliveries)
        )

    async def get_stats(self, sender_id: int) -> DeliveryStatsResponse:
        stats = await self.repository.aggregate_sender_stats(sender_id)
        return DeliveryStatsResponse(**stats)
