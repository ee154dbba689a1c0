from abc import ABC, abstractmethod
from typing import Optional, List
from pydantic import BaseModel

from order_tracking.domain.models import Order, OrderStatus, TimelineEvent


class OrderFilter(BaseModel):
    """Admin table filter: exact status, free text over number/name/email"""
    status: Optional[OrderStatus] = None
    search: Optional[str] = None

    def matches(self, order: Order) -> bool:
        if self.status is not None and order.status != self.status:
            return False
        if self.search and self.search.strip():
            needle = self.search.strip().lower()
            haystack = (order.order_number, order.customer_name, order.customer_email)
            return any(needle in (value or "").lower() for value in haystack)
        return True


class OrderRepository(ABC):
    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_order_number(self, order_number: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_tracking_number(self, tracking_number: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def list_by_customer(self, customer_id: str) -> List[Order]:
        pass

    @abstractmethod
    async def list_all(self, order_filter: Optional[OrderFilter] = None) -> List[Order]:
        pass

    @abstractmethod
    async def add(self, order: Order) -> None:
        pass

    @abstractmethod
    async def append_timeline_event(
        self, order_id: str, event: TimelineEvent, expected_version: int
    ) -> Order:
        """Set status and append the event in one write; ConflictError on stale version"""
        pass

    @abstractmethod
    async def update_tracking(
        self,
        order_id: str,
        tracking_number: Optional[str],
        estimated_delivery: Optional[str],
        expected_version: int,
    ) -> Order:
        pass


class UnitOfWork(ABC):
    @property
    @abstractmethod
    def orders(self) -> OrderRepository:
        pass

    @abstractmethod
    async def __call__(self):
        pass

    @abstractmethod
    async def commit(self):
        pass

    @abstractmethod
    async def rollback(self):
        pass


class UpdatePublisher(ABC):
    @abstractmethod
    async def publish(self, order: Order) -> bool:
        pass
