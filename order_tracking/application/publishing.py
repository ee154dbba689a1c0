import logging
from typing import Sequence

from order_tracking.domain.models import Order
from order_tracking.application.interfaces import UpdatePublisher

logger = logging.getLogger(__name__)


async def publish_update(publishers: Sequence[UpdatePublisher], order: Order) -> None:
    """Fan out a committed snapshot; the write already happened, so failures are only logged."""
    for publisher in publishers:
        try:
            delivered = await publisher.publish(order)
            if not delivered:
                logger.warning(
                    f"{type(publisher).__name__} did not deliver update for order {order.id}"
                )
        except Exception as e:
            logger.error(
                f"{type(publisher).__name__} failed for order {order.id}: {e}", exc_info=True
            )
