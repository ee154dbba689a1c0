import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional, List
from sqlalchemy import select, insert, update, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from order_tracking.domain.models import (
    Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus, ShippingAddress, TimelineEvent
)
from order_tracking.domain.exceptions import ConflictError, OrderNotFoundError, StorageError
from order_tracking.infrastructure.db_schema import orders_tbl, order_timeline_tbl
from order_tracking.application.interfaces import OrderFilter, OrderRepository


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything we write is UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SQLAlchemyOrderRepository(OrderRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def _execute(self, stmt):
        try:
            return await self._session.execute(stmt)
        except IntegrityError as e:
            raise ConflictError(f"Concurrent write rejected by the database: {e.orig}") from e
        except SQLAlchemyError as e:
            raise StorageError(f"Database error: {e}") from e

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        return await self._fetch_one(orders_tbl.c.id == order_id)

    async def get_by_order_number(self, order_number: str) -> Optional[Order]:
        return await self._fetch_one(
            func.lower(orders_tbl.c.order_number) == order_number.strip().lower()
        )

    async def get_by_tracking_number(self, tracking_number: str) -> Optional[Order]:
        return await self._fetch_one(
            func.lower(orders_tbl.c.tracking_number) == tracking_number.strip().lower()
        )

    async def list_by_customer(self, customer_id: str) -> List[Order]:
        return await self._fetch_many(
            select(orders_tbl)
            .where(orders_tbl.c.user_id == customer_id)
            .order_by(orders_tbl.c.created_at.desc())
        )

    async def list_all(self, order_filter: Optional[OrderFilter] = None) -> List[Order]:
        stmt = select(orders_tbl).order_by(orders_tbl.c.created_at.desc())
        if order_filter and order_filter.status is not None:
            stmt = stmt.where(orders_tbl.c.status == order_filter.status.db_value)
        if order_filter and order_filter.search and order_filter.search.strip():
            needle = f"%{order_filter.search.strip().lower()}%"
            stmt = stmt.where(or_(
                func.lower(orders_tbl.c.order_number).like(needle),
                func.lower(orders_tbl.c.customer_name).like(needle),
                func.lower(orders_tbl.c.customer_email).like(needle),
            ))
        return await self._fetch_many(stmt)

    async def add(self, order: Order) -> None:
        await self._execute(insert(orders_tbl).values(
            id=order.id,
            order_number=order.order_number,
            user_id=order.customer_id,
            customer_name=order.customer_name,
            customer_email=order.customer_email,
            items=[item.model_dump(mode="json") for item in order.items],
            subtotal=order.subtotal,
            shipping=order.shipping_cost,
            tax=order.tax,
            total=order.total,
            status=order.status.db_value,
            payment_status=order.payment_status.name.lower(),
            payment_method=order.payment_method.value,
            shipping_address=order.shipping_address.model_dump(mode="json"),
            tracking_number=order.tracking_number,
            estimated_delivery=order.estimated_delivery,
            notes=order.notes,
            version=order.version,
            created_at=order.created_at,
            updated_at=order.updated_at,
        ))
        for event in order.timeline:
            await self._insert_event(order.id, event)

    async def append_timeline_event(
        self, order_id: str, event: TimelineEvent, expected_version: int
    ) -> Order:
        result = await self._execute(
            update(orders_tbl)
            .where(orders_tbl.c.id == order_id, orders_tbl.c.version == expected_version)
            .values(
                status=event.status.db_value,
                updated_at=event.timestamp,
                version=expected_version + 1,
            )
        )
        await self._ensure_updated(result, order_id, expected_version)
        await self._insert_event(order_id, event)
        return await self.get_by_id(order_id)

    async def update_tracking(
        self,
        order_id: str,
        tracking_number: Optional[str],
        estimated_delivery: Optional[str],
        expected_version: int,
    ) -> Order:
        result = await self._execute(
            update(orders_tbl)
            .where(orders_tbl.c.id == order_id, orders_tbl.c.version == expected_version)
            .values(
                tracking_number=tracking_number,
                estimated_delivery=estimated_delivery,
                updated_at=datetime.now(timezone.utc),
                version=expected_version + 1,
            )
        )
        await self._ensure_updated(result, order_id, expected_version)
        return await self.get_by_id(order_id)

    async def _ensure_updated(self, result, order_id: str, expected_version: int) -> None:
        if result.rowcount == 1:
            return
        exists = await self._execute(select(orders_tbl.c.version).where(orders_tbl.c.id == order_id))
        row = exists.fetchone()
        if row is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        raise ConflictError(
            f"Order {order_id} was modified concurrently (expected version {expected_version}, found {row.version})"
        )

    async def _insert_event(self, order_id: str, event: TimelineEvent) -> None:
        await self._execute(insert(order_timeline_tbl).values(
            id=str(uuid.uuid4()),
            order_id=order_id,
            sequence=event.sequence,
            status=event.status.db_value,
            description=event.description,
            location=event.location,
            created_at=event.timestamp,
        ))

    async def _fetch_one(self, condition) -> Optional[Order]:
        orders = await self._fetch_many(select(orders_tbl).where(condition).limit(1))
        return orders[0] if orders else None

    async def _fetch_many(self, stmt) -> List[Order]:
        rows = (await self._execute(stmt)).fetchall()
        if not rows:
            return []
        timeline_rows = (await self._execute(
            select(order_timeline_tbl)
            .where(order_timeline_tbl.c.order_id.in_([row.id for row in rows]))
            .order_by(order_timeline_tbl.c.order_id, order_timeline_tbl.c.sequence)
        )).fetchall()
        timelines = defaultdict(list)
        for event_row in timeline_rows:
            timelines[event_row.order_id].append(event_row)
        return [self._to_domain(row, timelines[row.id]) for row in rows]

    def _to_domain(self, row, timeline_rows) -> Order:
        """DB -> Domain"""
        return Order(
            id=row.id,
            order_number=row.order_number,
            customer_id=row.user_id,
            customer_name=row.customer_name,
            customer_email=row.customer_email,
            items=[OrderItem(**item) for item in row.items],
            subtotal=row.subtotal,
            shipping_cost=row.shipping,
            tax=row.tax,
            total=row.total,
            shipping_address=ShippingAddress(**row.shipping_address),
            payment_method=PaymentMethod(row.payment_method),
            payment_status=PaymentStatus[row.payment_status.upper()],
            status=OrderStatus.parse(row.status),
            tracking_number=row.tracking_number,
            estimated_delivery=row.estimated_delivery,
            notes=row.notes,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
            timeline=[
                TimelineEvent(
                    status=OrderStatus.parse(event.status),
                    description=event.description,
                    location=event.location,
                    timestamp=_aware(event.created_at),
                    sequence=event.sequence,
                )
                for event in timeline_rows
            ],
            version=row.version,
        )
