import inspect
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Union

from order_tracking.domain.models import Order
from order_tracking.application.interfaces import UpdatePublisher
from order_tracking.application.retry import with_storage_retries

logger = logging.getLogger(__name__)

OnUpdate = Callable[[Order], Union[None, Awaitable[None]]]


class Subscription:
    """Handle returned to subscribers. unsubscribe() stops all further callbacks."""

    def __init__(self, broker: Optional["OrderUpdateBroker"], order_id: Optional[str], callback: Optional[OnUpdate]):
        self.order_id = order_id
        self._broker = broker
        self._callback = callback
        self._active = broker is not None and callback is not None
        # order id -> last delivered version
        self._delivered: Dict[str, int] = {}

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._broker is not None:
            self._broker._remove(self)
        self._callback = None

    async def _deliver(self, order: Order) -> bool:
        if not self._active:
            return False
        # Stale snapshot: a newer version was already delivered
        if self._delivered.get(order.id, 0) >= order.version:
            return False
        if order.is_terminal():
            # Terminal orders are forgotten
            self._delivered.pop(order.id, None)
        else:
            self._delivered[order.id] = order.version
        result = self._callback(order)
        if inspect.isawaitable(result):
            await result
        return True


class OrderUpdateBroker(UpdatePublisher):
    """In-process push feed of committed order snapshots"""

    def __init__(self):
        self._by_order: Dict[str, List[Subscription]] = {}
        self._all: List[Subscription] = []

    def subscribe(self, order_id: str, on_update: OnUpdate) -> Subscription:
        subscription = Subscription(self, order_id, on_update)
        self._by_order.setdefault(order_id, []).append(subscription)
        return subscription

    def subscribe_all(self, on_update: OnUpdate) -> Subscription:
        """Admin feed: every created or changed order"""
        subscription = Subscription(self, None, on_update)
        self._all.append(subscription)
        return subscription

    def subscriber_count(self, order_id: Optional[str] = None) -> int:
        if order_id is None:
            return len(self._all)
        return len(self._by_order.get(order_id, []))

    async def publish(self, order: Order) -> bool:
        targets = list(self._by_order.get(order.id, [])) + list(self._all)
        for subscription in targets:
            try:
                await subscription._deliver(order)
            except Exception as e:
                logger.error(f"Subscriber callback failed for order {order.id}: {e}", exc_info=True)
            if order.is_terminal() and subscription.order_id is not None:
                subscription.unsubscribe()
        return True

    def _remove(self, subscription: Subscription) -> None:
        if subscription.order_id is None:
            if subscription in self._all:
                self._all.remove(subscription)
            return
        subscriptions = self._by_order.get(subscription.order_id, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)
        if not subscriptions:
            self._by_order.pop(subscription.order_id, None)


class SubscribeToOrderUpdatesUseCase:
    """
    Live updates for one order.

    Unknown order: the handle comes back already closed. Terminal order: the
    current snapshot is delivered once, then the handle closes.
    """

    def __init__(self, unit_of_work, broker: OrderUpdateBroker, max_retries: int = 3, retry_delay: float = 0.2):
        self._uow = unit_of_work
        self._broker = broker
        self._max_retries = max_retries
        self._retry_delay = retry_delay

    async def __call__(self, order_id: str, on_update: OnUpdate) -> Subscription:
        # Subscribe before reading so no commit falls between the two
        subscription = self._broker.subscribe(order_id, on_update)

        async def load():
            async with self._uow() as uow:
                return await uow.orders.get_by_id(order_id)

        try:
            order = await with_storage_retries(load, self._max_retries, self._retry_delay)
        except Exception:
            subscription.unsubscribe()
            raise

        if order is None:
            logger.info(f"Subscription to unknown order {order_id} closed")
            subscription.unsubscribe()
        elif order.is_terminal():
            try:
                await subscription._deliver(order)
            finally:
                subscription.unsubscribe()
        return subscription
