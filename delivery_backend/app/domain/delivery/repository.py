"""
Delivery Repository (store gateway).

Every state-changing operation is a single conditional UPDATE whose WHERE
clause carries the precondition; success is `rowcount == 1`. Each one commits
immediately so the outcome is durable before the caller reacts to it.
"""

import math
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, update, func, case
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from delivery_backend.app.models.delivery import Delivery
from delivery_backend.app.models.delivery_stop import DeliveryStop
from delivery_backend.app.models.delivery_tracking import DeliveryTracking
from delivery_backend.app.models.delivery_enums import (
    DeliveryStatus,
    DeliveryPriority,
    StopStatus,
    CLAIMED_STATUSES,
    PRIORITY_RANK,
)
from delivery_backend.app.domain.delivery.pricing import haversine_distance

KM_PER_DEGREE_LAT = 111.32

# Bounding-box candidates read per query, as a multiple of the requested limit
CANDIDATE_BATCH_FACTOR = 4

# Statuses from which the graph allows a cancellation
CANCELLABLE_STATUSES = (
    DeliveryStatus.REQUESTED,
    DeliveryStatus.ACCEPTED,
    DeliveryStatus.PICKING_UP,
)

RETURNABLE_STATUSES = (
    DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.ARRIVED,
)


class DeliveryRepository:
    """Persistence operations for deliveries, their stops and tracking events."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _execute_conditional(self, stmt) -> bool:
        result = await self.db.execute(stmt.execution_options(synchronize_session=False))
        await self.db.commit()
        return result.rowcount == 1

    # Creation

    async def create_delivery(self, delivery: Delivery, stops: List[DeliveryStop]) -> Delivery:
        """
        Insert a delivery and its stops in one transaction.

        Raises:
            IntegrityError: On a unique violation (e.g. tracking_code); nothing is persisted.
        """
        try:
            self.db.add(delivery)
            await self.db.flush()
            if stops:
                self.db.add_all(stops)
                await self.db.flush()
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        return delivery

    # Reads

    async def get_by_id(self, delivery_id: str) -> Optional[Delivery]:
        result = await self.db.execute(
            select(Delivery)
            .where(Delivery.id == delivery_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_tracking_code(self, tracking_code: str) -> Optional[Delivery]:
        result = await self.db.execute(
            select(Delivery)
            .where(Delivery.tracking_code == tracking_code)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_active_for_driver(self, driver_id: int) -> Optional[Delivery]:
        """Return the driver's most recently accepted delivery in a claimed status, if any."""
        result = await self.db.execute(
            select(Delivery)
            .where(
                Delivery.driver_id == driver_id,
                Delivery.status.in_(CLAIMED_STATUSES)
            )
            .order_by(Delivery.accepted_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def list_available(
        self,
        latitude: float,
        longitude: float,
        radius_km: float,
        limit: int = 50
    ) -> List[Delivery]:
        """
        List requested deliveries whose pickup lies within radius_km.

        A latitude/longitude bounding box narrows the candidates in SQL; the
        exact great-circle distance is applied to that ordered candidate set,
        read in batches of CANDIDATE_BATCH_FACTOR * limit rows.

        Returns:
            Up to `limit` deliveries ordered express, standard, scheduled,
            then oldest request first.
        """
        priority_rank = case(
            dict(PRIORITY_RANK),
            value=Delivery.priority,
            else_=len(PRIORITY_RANK) + 1
        )

        query = select(Delivery).where(Delivery.status == DeliveryStatus.REQUESTED)

        lat_delta = radius_km / KM_PER_DEGREE_LAT
        query = query.where(
            Delivery.pickup_latitude >= latitude - lat_delta,
            Delivery.pickup_latitude <= latitude + lat_delta,
        )
        cos_lat = math.cos(math.radians(latitude))
        if cos_lat > 0.01:
            lng_delta = radius_km / (KM_PER_DEGREE_LAT * cos_lat)
            # Skip the longitude bound when the box wraps the antimeridian
            if -180.0 <= longitude - lng_delta and longitude + lng_delta <= 180.0:
                query = query.where(
                    Delivery.pickup_longitude >= longitude - lng_delta,
                    Delivery.pickup_longitude <= longitude + lng_delta,
                )

        query = query.order_by(
            priority_rank, Delivery.requested_at.asc(), Delivery.id
        ).execution_options(populate_existing=True)

        batch_size = max(limit, 1) * CANDIDATE_BATCH_FACTOR
        deliveries = []
        offset = 0
        while len(deliveries) < limit:
            result = await self.db.execute(query.limit(batch_size).offset(offset))
            batch = result.scalars().all()
            for delivery in batch:
                distance = haversine_distance(
                    latitude, longitude, delivery.pickup_latitude, delivery.pickup_longitude
                )
                if distance <= radius_km:
                    deliveries.append(delivery)
                    if len(deliveries) >= limit:
                        break
            if len(batch) < batch_size:
                break
            offset += batch_size
        return deliveries

    async def list_for_sender(
        self,
        sender_id: int,
        status: Optional[DeliveryStatus] = None,
        priority: Optional[DeliveryPriority] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        limit: int = 20,
        offset: int = 0
    ) -> Tuple[List[Delivery], int]:
        """
        List a sender's deliveries, newest first.

        Returns:
            (page of deliveries, total matching count)
        """
        conditions = [Delivery.sender_id == sender_id]
        if status is not None:
            conditions.append(Delivery.status == status)
        if priority is not None:
            conditions.append(Delivery.priority == priority)
        if from_date is not None:
            conditions.append(Delivery.requested_at >= from_date)
        if to_date is not None:
            conditions.append(Delivery.requested_at <= to_date)

        total = await self.db.scalar(select(func.count(Delivery.id)).where(*conditions))

        result = await self.db.execute(
            select(Delivery)
            .where(*conditions)
            .order_by(Delivery.requested_at.desc())
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all()), total or 0

    async def list_for_driver(
        self,
        driver_id: int,
        limit: int = 20,
        offset: int = 0
    ) -> Tuple[List[Delivery], int]:
        total = await self.db.scalar(
            select(func.count(Delivery.id)).where(Delivery.driver_id == driver_id)
        )
        result = await self.db.execute(
            select(Delivery)
            .where(Delivery.driver_id == driver_id)
            .order_by(Delivery.requested_at.desc())
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all()), total or 0

    # Conditional updates

    async def atomic_accept(self, delivery_id: str, driver_id: int) -> bool:
        """
        Claim a requested delivery for a driver.

        Returns:
            True iff this call moved the row from (unassigned, requested) to accepted
        """
        now = datetime.utcnow()
        stmt = update(Delivery).where(
            Delivery.id == delivery_id,
            Delivery.status == DeliveryStatus.REQUESTED,
            Delivery.driver_id.is_(None)
        ).values(
            driver_id=driver_id,
            status=DeliveryStatus.ACCEPTED,
            accepted_at=now,
            updated_at=now
        )
        return await self._execute_conditional(stmt)

    async def update_status(
        self,
        delivery_id: str,
        driver_id: int,
        new_status: DeliveryStatus,
        expected_status: Optional[DeliveryStatus] = None
    ) -> bool:
        """
        Move a driver-owned delivery to new_status.

        Sets picked_up_at when the new status is picked_up. When
        expected_status is given the update only applies if the row is still
        in that status, so a validated transition cannot be applied to a row
        that moved on concurrently.
        """
        now = datetime.utcnow()
        conditions = [Delivery.id == delivery_id, Delivery.driver_id == driver_id]
        if expected_status is not None:
            conditions.append(Delivery.status == expected_status)

        values = {"status": new_status, "updated_at": now}
        if new_status == DeliveryStatus.PICKED_UP:
            values["picked_up_at"] = now

        stmt = update(Delivery).where(*conditions).values(**values)
        return await self._execute_conditional(stmt)

    async def atomic_complete(
        self,
        delivery_id: str,
        driver_id: int,
        proof_type,
        photo_url: Optional[str],
        signature_url: Optional[str],
        final_fare: float
    ) -> bool:
        """Mark an in-transit or arrived delivery as delivered with its proof and final fare."""
        now = datetime.utcnow()
        stmt = update(Delivery).where(
            Delivery.id == delivery_id,
            Delivery.driver_id == driver_id,
            Delivery.status.in_(RETURNABLE_STATUSES)
        ).values(
            status=DeliveryStatus.DELIVERED,
            proof_type=proof_type,
            proof_photo_url=photo_url,
            signature_url=signature_url,
            final_fare=final_fare,
            delivered_at=now,
            updated_at=now
        )
        return await self._execute_conditional(stmt)

    async def cancel(self, delivery_id: str, reason: str) -> bool:
        now = datetime.utcnow()
        stmt = update(Delivery).where(
            Delivery.id == delivery_id,
            Delivery.status.in_(CANCELLABLE_STATUSES)
        ).values(
            status=DeliveryStatus.CANCELLED,
            cancelled_at=now,
            cancel_reason=reason,
            updated_at=now
        )
        return await self._execute_conditional(stmt)

    async def return_delivery(self, delivery_id: str, driver_id: int, reason: str) -> bool:
        now = datetime.utcnow()
        stmt = update(Delivery).where(
            Delivery.id == delivery_id,
            Delivery.driver_id == driver_id,
            Delivery.status.in_(RETURNABLE_STATUSES)
        ).values(
            status=DeliveryStatus.RETURNED,
            cancel_reason=reason,
            updated_at=now
        )
        return await self._execute_conditional(stmt)

    async def rate_by_sender(self, delivery_id: str, rating: int, feedback: Optional[str] = None) -> bool:
        """Record the sender's rating once, on a delivered delivery."""
        stmt = update(Delivery).where(
            Delivery.id == delivery_id,
            Delivery.status == DeliveryStatus.DELIVERED,
            Delivery.sender_rating.is_(None)
        ).values(
            sender_rating=rating,
            sender_feedback=feedback,
            updated_at=datetime.utcnow()
        )
        return await self._execute_conditional(stmt)

    async def rate_by_driver(self, delivery_id: str, rating: int, feedback: Optional[str] = None) -> bool:
        """Record the driver's rating once, on a delivered delivery."""
        stmt = update(Delivery).where(
            Delivery.id == delivery_id,
            Delivery.status == DeliveryStatus.DELIVERED,
            Delivery.driver_rating.is_(None)
        ).values(
            driver_rating=rating,
            driver_feedback=feedback,
            updated_at=datetime.utcnow()
        )
        return await self._execute_conditional(stmt)

    # Tracking

    async def append_tracking_event(self, event: DeliveryTracking) -> DeliveryTracking:
        try:
            self.db.add(event)
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        return event

    async def list_tracking_events(self, delivery_id: str) -> List[DeliveryTracking]:
        result = await self.db.execute(
            select(DeliveryTracking)
            .where(DeliveryTracking.delivery_id == delivery_id)
            .order_by(DeliveryTracking.timestamp.asc())
        )
        return list(result.scalars().all())

    # Stops

    async def list_stops(self, delivery_id: str) -> List[DeliveryStop]:
        result = await self.db.execute(
            select(DeliveryStop)
            .where(DeliveryStop.delivery_id == delivery_id)
            .order_by(DeliveryStop.stop_order.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def update_stop_status(
        self,
        delivery_id: str,
        stop_id: str,
        status: StopStatus,
        photo_url: Optional[str] = None
    ) -> bool:
        """
        Update a stop belonging to delivery_id.

        arrived stamps arrived_at; completed stamps completed_at and stores
        the optional photo.
        """
        now = datetime.utcnow()
        values = {"status": status}
        if status == StopStatus.ARRIVED:
            values["arrived_at"] = now
        elif status == StopStatus.COMPLETED:
            values["completed_at"] = now
            values["proof_photo_url"] = photo_url

        stmt = update(DeliveryStop).where(
            DeliveryStop.id == stop_id,
            DeliveryStop.delivery_id == delivery_id
        ).values(**values)
        return await self._execute_conditional(stmt)

    # Stats

    async def aggregate_sender_stats(self, sender_id: int) -> dict:
        """
        Aggregate a sender's delivery history.

        Returns:
            Dict with total_deliveries, completed_count, cancelled_count,
            in_progress_count, average_rating, total_spent, average_delivery_min
        """
        delivered = Delivery.status == DeliveryStatus.DELIVERED
        counts = await self.db.execute(
            select(
                func.count(Delivery.id),
                func.sum(case((delivered, 1), else_=0)),
                func.sum(case((Delivery.status == DeliveryStatus.CANCELLED, 1), else_=0)),
                func.sum(case((Delivery.status.in_(CLAIMED_STATUSES), 1), else_=0)),
                func.avg(Delivery.sender_rating),
                func.sum(case((delivered, func.coalesce(Delivery.final_fare, Delivery.estimated_fare)), else_=0)),
            ).where(Delivery.sender_id == sender_id)
        )
        total, completed, cancelled, in_progress, avg_rating, total_spent = counts.one()

        # Durations are computed here to stay portable across backends
        durations = await self.db.execute(
            select(Delivery.requested_at, Delivery.delivered_at).where(
                Delivery.sender_id == sender_id,
                delivered,
                Delivery.delivered_at.is_not(None)
            )
        )
        minutes = [
            (delivered_at - requested_at).total_seconds() / 60
            for requested_at, delivered_at in durations.all()
        ]

        return {
            "total_deliveries": total or 0,
            "completed_count": int(completed or 0),
            "cancelled_count": int(cancelled or 0),
            "in_progress_count": int(in_progress or 0),
            "average_rating": float(avg_rating or 0),
            "total_spent": float(total_spent or 0),
            "average_delivery_min": sum(minutes) / len(minutes) if minutes else 0.0,
        }
