from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator


class OrderStatus(str, Enum):
    PLACED = "Placed"
    CONFIRMED = "Confirmed"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    RETURNED = "Returned"

    @property
    def db_value(self) -> str:
        """Storage value: placed, out_for_delivery, ..."""
        return self.name.lower()

    @classmethod
    def parse(cls, value) -> "OrderStatus":
        """Accepts 'Out for Delivery', 'OUT_FOR_DELIVERY' or 'out_for_delivery'"""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unknown order status: {value!r}")
        text = value.strip()
        for status in cls:
            if text in (status.value, status.name, status.db_value):
                return status
        raise ValueError(f"Unknown order status: {value!r}")


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"
    REFUNDED = "Refunded"


class PaymentMethod(str, Enum):
    CASH_ON_DELIVERY = "Cash on Delivery"


# Money columns are NUMERIC(12, 2)
MONEY_MAX_DIGITS = 12
MONEY_DECIMAL_PLACES = 2
MONEY_LIMIT = Decimal(10) ** (MONEY_MAX_DIGITS - MONEY_DECIMAL_PLACES)


def is_storable_amount(value: Decimal) -> bool:
    """At most two decimal places and below MONEY_LIMIT in magnitude"""
    if not value.is_finite():
        return False
    return value.normalize().as_tuple().exponent >= -MONEY_DECIMAL_PLACES and abs(value) < MONEY_LIMIT


class OrderItem(BaseModel):
    """Value object: order line item"""
    product_id: str
    name: str
    variant: Optional[str] = None
    price: Decimal = Field(ge=0, lt=MONEY_LIMIT, decimal_places=MONEY_DECIMAL_PLACES)
    quantity: int = Field(ge=1)
    image_url: str = ""


class ShippingAddress(BaseModel):
    """Value object: shipping address"""
    first_name: str
    last_name: str
    full_name: Optional[str] = None
    email: str
    phone: str
    address: str
    apartment: Optional[str] = None
    city: str
    state: Optional[str] = None
    postal_code: str
    country: str

    @model_validator(mode="after")
    def _fill_full_name(self):
        if not self.full_name:
            self.full_name = f"{self.first_name} {self.last_name}".strip()
        return self


class TimelineEvent(BaseModel):
    """Value object: one immutable status change record"""
    model_config = ConfigDict(frozen=True)

    status: OrderStatus
    description: str
    location: Optional[str] = None
    timestamp: datetime
    sequence: int = Field(ge=0)


class Order(BaseModel):
    """Domain entity: order"""
    id: str
    order_number: str
    customer_id: Optional[str] = None
    customer_name: str
    customer_email: str
    items: list[OrderItem]
    subtotal: Decimal = Field(ge=0)
    shipping_cost: Decimal = Field(ge=0)
    tax: Decimal = Field(ge=0)
    total: Decimal = Field(ge=0)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY
    payment_status: PaymentStatus = PaymentStatus.PENDING
    status: OrderStatus
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    timeline: list[TimelineEvent]
    version: int = 1

    def is_terminal(self) -> bool:
        """Business rule: Delivered, Cancelled and Returned orders are frozen"""
        return self.status in TERMINAL_STATUSES

    def can_transition_to(self, new_status: OrderStatus) -> bool:
        return new_status == self.status or not self.is_terminal()

    def next_sequence(self) -> int:
        return len(self.timeline)

    def with_event(self, event: TimelineEvent) -> "Order":
        return self.model_copy(update={
            "status": event.status,
            "timeline": [*self.timeline, event],
            "updated_at": event.timestamp,
            "version": self.version + 1,
        })


TERMINAL_STATUSES = frozenset({
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
    OrderStatus.RETURNED,
})
