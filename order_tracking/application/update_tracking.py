import logging
from typing import Optional, Sequence

from order_tracking.domain.models import Order
from order_tracking.domain.exceptions import OrderNotFoundError, ValidationError
from order_tracking.application.interfaces import UpdatePublisher
from order_tracking.application.publishing import publish_update
from order_tracking.application.retry import with_storage_retries

logger = logging.getLogger(__name__)


class UpdateTrackingUseCase:
    """Sets tracking number / estimated delivery. Status and timeline are untouched."""

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
        tracking_number: Optional[str],
        estimated_delivery: Optional[str] = None,
    ) -> Order:
        tracking_number = (tracking_number or "").strip() or None
        if tracking_number is None and estimated_delivery is None:
            raise ValidationError("Nothing to update: tracking number and estimated delivery are empty")

        async def apply() -> Order:
            async with self._uow() as uow:
                order = await uow.orders.get_by_id(order_id)
                if not order:
                    raise OrderNotFoundError(f"Order {order_id} not found")

                if tracking_number:
                    owner = await uow.orders.get_by_tracking_number(tracking_number)
                    if owner and owner.id != order_id:
                        raise ValidationError(
                            f"Tracking number {tracking_number} is already used by order {owner.order_number}"
                        )

                updated = await uow.orders.update_tracking(
                    order_id,
                    tracking_number or order.tracking_number,
                    estimated_delivery if estimated_delivery is not None else order.estimated_delivery,
                    expected_version=order.version,
                )
                await uow.commit()
                return updated

        order = await with_storage_retries(apply, self._max_retries, self._retry_delay)
        logger.info(f"Tracking updated for order {order_id}: {order.tracking_number}")
        await publish_update(self._publishers, order)
        return order
