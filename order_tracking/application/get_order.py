from typing import List, Optional

from order_tracking.domain.models import Order
from order_tracking.domain.exceptions import OrderNotFoundError, ValidationError
from order_tracking.application.interfaces import OrderFilter
from order_tracking.application.retry import with_storage_retries


class _ReadUseCase:
    def __init__(self, unit_of_work, max_retries: int = 3, retry_delay: float = 0.2):
        self._uow = unit_of_work
        self._max_retries = max_retries
        self._retry_delay = retry_delay

    async def _read(self, operation):
        return await with_storage_retries(operation, self._max_retries, self._retry_delay)


class GetOrderUseCase(_ReadUseCase):
    async def __call__(self, order_id: str) -> Order:
        async def load():
            async with self._uow() as uow:
                return await uow.orders.get_by_id(order_id)

        order = await self._read(load)
        if not order:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return order


class FindOrderUseCase(_ReadUseCase):
    """Customer "track my order": the query may be an id, order number or tracking number"""

    async def __call__(self, query: str) -> Order:
        query = (query or "").strip()
        if not query:
            raise ValidationError("Enter an order number or tracking number")

        async def load() -> Optional[Order]:
            async with self._uow() as uow:
                return (
                    await uow.orders.get_by_id(query)
                    or await uow.orders.get_by_order_number(query)
                    or await uow.orders.get_by_tracking_number(query)
                )

        order = await self._read(load)
        if not order:
            raise OrderNotFoundError(f"No order matches {query}")
        return order


class ListCustomerOrdersUseCase(_ReadUseCase):
    async def __call__(self, customer_id: str) -> List[Order]:
        async def load():
            async with self._uow() as uow:
                return await uow.orders.list_by_customer(customer_id)

        return await self._read(load)


class ListOrdersUseCase(_ReadUseCase):
    """Admin orders table"""

    async def __call__(self, order_filter: Optional[OrderFilter] = None) -> List[Order]:
        async def load():
            async with self._uow() as uow:
                return await uow.orders.list_all(order_filter or OrderFilter())

        return await self._read(load)
