from decimal import Decimal
from pydantic import BaseModel
from datetime import datetime
from typing import Optional

from order_tracking.domain.models import (
    Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus, ShippingAddress
)
from order_tracking.domain.lifecycle import allowed_admin_statuses, progress_rank


class CreateOrderRequest(BaseModel):
    customer_id: Optional[str] = None
    customer_name: str
    customer_email: str
    items: list[OrderItem]
    subtotal: Decimal
    shipping_cost: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    total: Decimal
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY
    notes: Optional[str] = None


class TransitionStatusRequest(BaseModel):
    status: str
    description: Optional[str] = None
    location: Optional[str] = None


class UpdateTrackingRequest(BaseModel):
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[str] = None


class TimelineEventResponse(BaseModel):
    status: OrderStatus
    description: str
    location: Optional[str] = None
    timestamp: datetime
    sequence: int


class OrderResponse(BaseModel):
    id: str
    order_number: str
    customer_id: Optional[str] = None
    customer_name: str
    customer_email: str
    items: list[OrderItem]
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    total: Decimal
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    status: OrderStatus
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    timeline: list[TimelineEventResponse]
    progress_rank: int
    is_terminal: bool
    allowed_statuses: list[OrderStatus]

    @classmethod
    def from_domain(cls, order: Order):
        return cls(
            id=order.id,
            order_number=order.order_number,
            customer_id=order.customer_id,
            customer_name=order.customer_name,
            customer_email=order.customer_email,
            items=order.items,
            subtotal=order.subtotal,
            shipping_cost=order.shipping_cost,
            tax=order.tax,
            total=order.total,
            shipping_address=order.shipping_address,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            status=order.status,
            tracking_number=order.tracking_number,
            estimated_delivery=order.estimated_delivery,
            notes=order.notes,
            created_at=order.created_at,
            updated_at=order.updated_at,
            timeline=[TimelineEventResponse(**event.model_dump()) for event in order.timeline],
            progress_rank=progress_rank(order.status),
            is_terminal=order.is_terminal(),
            allowed_statuses=allowed_admin_statuses(order.status),
        )


class ErrorResponse(BaseModel):
    detail: str
