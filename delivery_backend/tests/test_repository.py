"""
Delivery Repository Tests.

Each conditional update must apply only when its precondition holds.
"""

import pytest
from datetime import datetime, timedelta
from sqlalchemy.exc import IntegrityError

from delivery_backend.app.domain.delivery.identity import generate_id, generate_proof_pin, generate_tracking_code
from delivery_backend.app.domain.delivery.repository import DeliveryRepository
from delivery_backend.app.models.delivery import Delivery
from delivery_backend.app.models.delivery_enums import (
    DeliveryPriority,
    DeliveryStatus,
    PackageSize,
    ProofType,
    StopStatus,
)
from delivery_backend.app.models.delivery_stop import DeliveryStop
from delivery_backend.app.models.delivery_tracking import DeliveryTracking

SENDER_ID = 101
DRIVER_ID = 201
OTHER_DRIVER_ID = 202


def build_delivery(**overrides) -> Delivery:
    now = datetime.utcnow()
    fields = dict(
        id=generate_id(),
        sender_id=SENDER_ID,
        driver_id=None,
        status=DeliveryStatus.REQUESTED,
        priority=DeliveryPriority.STANDARD,
        tracking_code=generate_tracking_code(),
        pickup_latitude=40.7128,
        pickup_longitude=-74.0060,
        pickup_address="1 Centre St",
        pickup_contact="Sam",
        pickup_phone="+1-212-555-0101",
        dropoff_latitude=40.7580,
        dropoff_longitude=-73.9855,
        dropoff_address="1560 Broadway",
        recipient_name="Riley",
        recipient_phone="+1-212-555-0199",
        package_size=PackageSize.SMALL,
        is_fragile=False,
        requires_signature=False,
        estimated_distance_km=5.31,
        estimated_duration_min=21,
        estimated_fare=7.37,
        surge_multiplier=1.0,
        proof_pin=generate_proof_pin(),
        requested_at=now,
        created_at=now,
        updated_at=now,
    )
    fields.update(overrides)
    return Delivery(**fields)


@pytest.fixture
def repo(db_session):
    return DeliveryRepository(db_session)


@pytest.fixture
async def requested(repo):
    return await repo.create_delivery(build_delivery(), [])


@pytest.fixture
async def in_transit(repo):
    delivery = build_delivery(
        driver_id=DRIVER_ID,
        status=DeliveryStatus.IN_TRANSIT,
        accepted_at=datetime.utcnow(),
        picked_up_at=datetime.utcnow(),
    )
    return await repo.create_delivery(delivery, [])


@pytest.mark.asyncio
async def test_create_with_stops_and_read_back(repo):
    delivery = build_delivery()
    stops = [
        DeliveryStop(
            id=generate_id(), delivery_id=delivery.id, stop_order=order,
            latitude=40.74, longitude=-73.99, address=f"Stop {order}", status=StopStatus.PENDING
        )
        for order in (1, 2)
    ]
    await repo.create_delivery(delivery, stops)

    loaded = await repo.get_by_id(delivery.id)
    assert loaded.tracking_code == delivery.tracking_code
    assert [s.stop_order for s in await repo.list_stops(delivery.id)] == [1, 2]
    assert (await repo.get_by_tracking_code(delivery.tracking_code)).id == delivery.id


@pytest.mark.asyncio
async def test_duplicate_tracking_code_persists_nothing(repo):
    first = await repo.create_delivery(build_delivery(), [])

    clash = build_delivery(tracking_code=first.tracking_code)
    stop = DeliveryStop(
        id=generate_id(), delivery_id=clash.id, stop_order=1,
        latitude=40.74, longitude=-73.99, address="Stop", status=StopStatus.PENDING
    )
    with pytest.raises(IntegrityError):
        await repo.create_delivery(clash, [stop])

    assert await repo.get_by_id(clash.id) is None
    assert await repo.list_stops(clash.id) == []


@pytest.mark.asyncio
async def test_atomic_accept_has_one_winner(repo, requested):
    assert await repo.atomic_accept(requested.id, DRIVER_ID) is True
    assert await repo.atomic_accept(requested.id, OTHER_DRIVER_ID) is False

    loaded = await repo.get_by_id(requested.id)
    assert loaded.driver_id == DRIVER_ID
    assert loaded.status == DeliveryStatus.ACCEPTED
    assert loaded.accepted_at is not None


@pytest.mark.asyncio
async def test_atomic_accept_unknown_delivery(repo):
    assert await repo.atomic_accept(generate_id(), DRIVER_ID) is False


@pytest.mark.asyncio
async def test_update_status_requires_owner(repo, requested):
    await repo.atomic_accept(requested.id, DRIVER_ID)

    assert await repo.update_status(requested.id, OTHER_DRIVER_ID, DeliveryStatus.PICKING_UP) is False
    assert await repo.update_status(requested.id, DRIVER_ID, DeliveryStatus.PICKING_UP) is True
    assert (await repo.get_by_id(requested.id)).status == DeliveryStatus.PICKING_UP


@pytest.mark.asyncio
async def test_update_status_expected_status_guard(repo, requested):
    await repo.atomic_accept(requested.id, DRIVER_ID)

    moved = await repo.update_status(
        requested.id, DRIVER_ID, DeliveryStatus.PICKED_UP, expected_status=DeliveryStatus.PICKING_UP
    )
    assert moved is False
    assert (await repo.get_by_id(requested.id)).status == DeliveryStatus.ACCEPTED


@pytest.mark.asyncio
async def test_update_status_stamps_pickup(repo, requested):
    await repo.atomic_accept(requested.id, DRIVER_ID)
    await repo.update_status(requested.id, DRIVER_ID, DeliveryStatus.PICKED_UP)

    loaded = await repo.get_by_id(requested.id)
    assert loaded.picked_up_at is not None
    assert loaded.accepted_at <= loaded.picked_up_at


@pytest.mark.asyncio
async def test_atomic_complete_gates(repo, requested, in_transit):
    # Not in transit
    assert await repo.atomic_complete(
        requested.id, DRIVER_ID, ProofType.PHOTO, "https://p/1.jpg", None, 7.37
    ) is False
    # Wrong driver
    assert await repo.atomic_complete(
        in_transit.id, OTHER_DRIVER_ID, ProofType.PHOTO, "https://p/1.jpg", None, 7.37
    ) is False

    assert await repo.atomic_complete(
        in_transit.id, DRIVER_ID, ProofType.PHOTO, "https://p/1.jpg", None, 7.37
    ) is True
    # Already delivered
    assert await repo.atomic_complete(
        in_transit.id, DRIVER_ID, ProofType.PHOTO, "https://p/1.jpg", None, 7.37
    ) is False

    loaded = await repo.get_by_id(in_transit.id)
    assert loaded.status == DeliveryStatus.DELIVERED
    assert loaded.final_fare == 7.37
    assert loaded.proof_type == ProofType.PHOTO
    assert loaded.delivered_at is not None


@pytest.mark.asyncio
async def test_cancel_only_before_pickup(repo, requested, in_transit):
    assert await repo.cancel(in_transit.id, "changed my mind") is False
    assert await repo.cancel(requested.id, "changed my mind") is True
    assert await repo.cancel(requested.id, "again") is False

    loaded = await repo.get_by_id(requested.id)
    assert loaded.status == DeliveryStatus.CANCELLED
    assert loaded.cancel_reason == "changed my mind"
    assert loaded.cancelled_at is not None


@pytest.mark.asyncio
async def test_return_requires_assigned_driver(repo, requested, in_transit):
    assert await repo.return_delivery(requested.id, DRIVER_ID, "no one home") is False
    assert await repo.return_delivery(in_transit.id, OTHER_DRIVER_ID, "no one home") is False
    assert await repo.return_delivery(in_transit.id, DRIVER_ID, "no one home") is True
    assert (await repo.get_by_id(in_transit.id)).status == DeliveryStatus.RETURNED


@pytest.mark.asyncio
async def test_ratings_set_once_per_side(repo, in_transit):
    assert await repo.rate_by_sender(in_transit.id, 5) is False  # not delivered yet

    await repo.atomic_complete(in_transit.id, DRIVER_ID, ProofType.CONTACTLESS, "https://p/2.jpg", None, 7.37)

    assert await repo.rate_by_sender(in_transit.id, 5, "great") is True
    assert await repo.rate_by_sender(in_transit.id, 1) is False
    assert await repo.rate_by_driver(in_transit.id, 4) is True
    assert await repo.rate_by_driver(in_transit.id, 2) is False

    loaded = await repo.get_by_id(in_transit.id)
    assert loaded.sender_rating == 5
    assert loaded.sender_feedback == "great"
    assert loaded.driver_rating == 4


@pytest.mark.asyncio
async def test_active_for_driver(repo, requested, in_transit):
    active = await repo.get_active_for_driver(DRIVER_ID)
    assert active.id == in_transit.id
    assert await repo.get_active_for_driver(OTHER_DRIVER_ID) is None


@pytest.mark.asyncio
async def test_list_available_orders_by_priority_then_age(repo):
    base = datetime.utcnow() - timedelta(hours=1)
    old_standard = build_delivery(priority=DeliveryPriority.STANDARD, requested_at=base)
    new_standard = build_delivery(priority=DeliveryPriority.STANDARD, requested_at=base + timedelta(minutes=5))
    scheduled = build_delivery(priority=DeliveryPriority.SCHEDULED, requested_at=base - timedelta(minutes=5))
    express = build_delivery(priority=DeliveryPriority.EXPRESS, requested_at=base + timedelta(minutes=10))
    far_away = build_delivery(priority=DeliveryPriority.EXPRESS, pickup_latitude=41.5, pickup_longitude=-74.0)
    taken = build_delivery(status=DeliveryStatus.ACCEPTED, driver_id=OTHER_DRIVER_ID)

    for delivery in (old_standard, new_standard, scheduled, express, far_away, taken):
        await repo.create_delivery(delivery, [])

    available = await repo.list_available(40.7128, -74.0060, radius_km=15.0)
    assert [d.id for d in available] == [express.id, old_standard.id, new_standard.id, scheduled.id]


@pytest.mark.asyncio
async def test_list_available_respects_limit(repo):
    for _ in range(5):
        await repo.create_delivery(build_delivery(), [])
    assert len(await repo.list_available(40.7128, -74.0060, radius_km=15.0, limit=3)) == 3


@pytest.mark.asyncio
async def test_list_available_bounds_rows_read_per_query(repo, mocker):
    for _ in range(10):
        await repo.create_delivery(build_delivery(), [])

    execute = mocker.spy(repo.db, "execute")
    available = await repo.list_available(40.7128, -74.0060, radius_km=15.0, limit=2)

    assert len(available) == 2
    assert execute.call_count == 1
    assert "LIMIT" in str(execute.call_args.args[0].compile())


@pytest.mark.asyncio
async def test_list_available_reads_past_out_of_radius_corners(repo):
    base = datetime.utcnow() - timedelta(hours=1)
    # Inside the bounding box, about 18 km from the centre
    corners = [
        build_delivery(
            priority=DeliveryPriority.EXPRESS,
            pickup_latitude=40.7128 + 0.12,
            pickup_longitude=-74.0060 + 0.15,
            requested_at=base + timedelta(minutes=i),
        )
        for i in range(5)
    ]
    nearby = build_delivery(priority=DeliveryPriority.STANDARD, requested_at=base)
    for delivery in corners + [nearby]:
        await repo.create_delivery(delivery, [])

    available = await repo.list_available(40.7128, -74.0060, radius_km=15.0, limit=1)
    assert [d.id for d in available] == [nearby.id]


@pytest.mark.asyncio
async def test_list_for_sender_filters_and_pages(repo):
    base = datetime.utcnow() - timedelta(days=2)
    for i in range(4):
        await repo.create_delivery(build_delivery(requested_at=base + timedelta(hours=i)), [])
    await repo.create_delivery(build_delivery(priority=DeliveryPriority.EXPRESS), [])
    await repo.create_delivery(build_delivery(sender_id=999), [])

    page, total = await repo.list_for_sender(SENDER_ID, limit=2, offset=0)
    assert total == 5
    assert len(page) == 2
    assert page[0].requested_at >= page[1].requested_at

    express, total = await repo.list_for_sender(SENDER_ID, priority=DeliveryPriority.EXPRESS)
    assert total == 1
    assert express[0].priority == DeliveryPriority.EXPRESS

    older, total = await repo.list_for_sender(SENDER_ID, to_date=base + timedelta(hours=1, minutes=30))
    assert total == 2


@pytest.mark.asyncio
async def test_update_stop_status_scoped_to_delivery(repo):
    delivery = build_delivery()
    stop = DeliveryStop(
        id=generate_id(), delivery_id=delivery.id, stop_order=1,
        latitude=40.74, longitude=-73.99, address="Stop 1", status=StopStatus.PENDING
    )
    other = build_delivery()
    await repo.create_delivery(delivery, [stop])
    await repo.create_delivery(other, [])

    assert await repo.update_stop_status(other.id, stop.id, StopStatus.ARRIVED) is False
    assert await repo.update_stop_status(delivery.id, stop.id, StopStatus.ARRIVED) is True
    assert await repo.update_stop_status(delivery.id, stop.id, StopStatus.COMPLETED, "https://p/s.jpg") is True

    loaded = (await repo.list_stops(delivery.id))[0]
    assert loaded.status == StopStatus.COMPLETED
    assert loaded.arrived_at is not None
    assert loaded.completed_at is not None
    assert loaded.proof_photo_url == "https://p/s.jpg"


@pytest.mark.asyncio
async def test_tracking_events_in_time_order(repo, requested):
    now = datetime.utcnow()
    for offset, text in ((2, "third"), (0, "first"), (1, "second")):
        await repo.append_tracking_event(DeliveryTracking(
            id=generate_id(), delivery_id=requested.id, driver_id=DRIVER_ID,
            status=text, timestamp=now + timedelta(seconds=offset)
        ))

    events = await repo.list_tracking_events(requested.id)
    assert [e.status for e in events] == ["first", "second", "third"]


@pytest.mark.asyncio
async def test_sender_stats(repo):
    requested_at = datetime.utcnow() - timedelta(minutes=40)
    delivered = build_delivery(
        driver_id=DRIVER_ID,
        status=DeliveryStatus.DELIVERED,
        requested_at=requested_at,
        delivered_at=requested_at + timedelta(minutes=30),
        final_fare=10.0,
        sender_rating=4,
    )
    await repo.create_delivery(delivered, [])
    await repo.create_delivery(build_delivery(status=DeliveryStatus.CANCELLED), [])
    await repo.create_delivery(build_delivery(status=DeliveryStatus.IN_TRANSIT, driver_id=DRIVER_ID), [])
    await repo.create_delivery(build_delivery(), [])

    stats = await repo.aggregate_sender_stats(SENDER_ID)
    assert stats["total_deliveries"] == 4
    assert stats["completed_count"] == 1
    assert stats["cancelled_count"] == 1
    assert stats["in_progress_count"] == 1
    assert stats["average_rating"] == 4.0
    assert stats["total_spent"] == 10.0
    assert stats["average_delivery_min"] == pytest.approx(30.0)


@pytest.mark.asyncio
async def test_stats_for_new_sender_are_zero(repo):
    stats = await repo.aggregate_sender_stats(12345)
    assert stats == {
        "total_deliveries": 0,
        "completed_count": 0,
        "cancelled_count": 0,
        "in_progress_count": 0,
        "average_rating": 0.0,
        "total_spent": 0.0,
        "average_delivery_min": 0.0,
    }
