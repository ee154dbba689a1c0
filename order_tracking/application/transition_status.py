import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from order_tracking.domain.models import Order, OrderStatus, TimelineEvent
from order_tracking.domain.lifecycle import describe
from order_tracking.domain.exceptions import (
    InvalidTransitionError, OrderNotFoundError, ValidationError
)
from order_tracking.application.interfaces import UpdatePublisher
from order_tracking.application.publishing import publish_update
from order_tracking.application.retry import with_storage_retries

logger = logging.getLogger(__name__)


class TransitionOrderStatusUseCase:
    """
    The only writer of order status.

    Terminal orders are frozen; repeating the current status is a no-op.
    Status and timeline event are written in one unit of work, guarded by
    the order version, so a stale writer gets ConflictError.
    """

    def __init__(
        self,
        unit_of_work,
        publishers: Sequence[UpdatePublisher] = (),
        max_retries: int = 3,
        retry_delay: float = 0.2,
    ):
        self._uow = unit_of_work
        self._publishers = publishers
        self._max_retries = max_retries
        self._retry_delay = retry_delay

    async def __call__(
        self,
        order_id: str,
        new_status,
        description: Optional[str] = None,
        location: Optional[str] = None,
    ) -> Order:
        try:
            target = OrderStatus.parse(new_status)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        logger.info(f"Transition requested for order {order_id}: {target.value}")
        order, changed = await with_storage_retries(
            lambda: self._apply(order_id, target, description, location),
            self._max_retries,
            self._retry_delay,
        )

        if changed:
            logger.info(f"Order {order_id} is now {order.status.value}")
            await publish_update(self._publishers, order)
        return order

    async def _apply(
        self,
        order_id: str,
        target: OrderStatus,
        description: Optional[str],
        location: Optional[str],
    ) -> tuple[Order, bool]:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            if not order:
                raise OrderNotFoundError(f"Order {order_id} not found")

            # Duplicate UI actions
            if order.status == target:
                logger.info(f"Order {order_id} already {target.value}, nothing to do")
                return order, False

            if not order.can_transition_to(target):
                raise InvalidTransitionError(order_id, order.status.value, target.value)

            event = TimelineEvent(
                status=target,
                description=describe(target, description),
                location=location or None,
                # Never earlier than the previous event, even if the clock stepped back
                timestamp=max(datetime.now(timezone.utc), order.timeline[-1].timestamp),
                sequence=order.next_sequence(),
            )
            updated = await uow.orders.append_timeline_event(
                order_id, event, expected_version=order.version
            )
            await uow.commit()
            return updated, True
