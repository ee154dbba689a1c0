import logging
import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence, Union
import pydantic
from pydantic import BaseModel

from order_tracking.domain.models import (
    MONEY_DECIMAL_PLACES, MONEY_LIMIT, Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus,
    ShippingAddress, TimelineEvent, is_storable_amount
)
from order_tracking.domain.lifecycle import describe
from order_tracking.domain.exceptions import ConflictError, ValidationError
from order_tracking.application.interfaces import OrderRepository, UpdatePublisher
from order_tracking.application.publishing import publish_update
from order_tracking.application.retry import with_storage_retries


logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 5

REQUIRED_ADDRESS_FIELDS = ("first_name", "last_name", "email", "phone", "address", "city", "postal_code", "country")


class CreateOrderDTO(BaseModel):
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


def generate_order_number(prefix: str, now: datetime) -> str:
    return f"{prefix}-{now.year}-{secrets.randbelow(10 ** 6):06d}"


def validate_draft(draft: CreateOrderDTO) -> None:
    errors = []
    if not draft.items:
        errors.append("Order must contain at least one item")
    for name in ("subtotal", "shipping_cost", "tax", "total"):
        value = getattr(draft, name)
        if value < 0:
            errors.append(f"{name} must not be negative")
        elif not is_storable_amount(value):
            errors.append(
                f"{name} must have at most {MONEY_DECIMAL_PLACES} decimal places and be below {MONEY_LIMIT}"
            )
    if draft.total != draft.subtotal + draft.shipping_cost + draft.tax:
        errors.append("total must equal subtotal + shipping_cost + tax")
    for name in REQUIRED_ADDRESS_FIELDS:
        if not (getattr(draft.shipping_address, name) or "").strip():
            errors.append(f"shipping_address.{name} is required")
    if errors:
        raise ValidationError("; ".join(errors), errors)


class CreateOrderUseCase:
    """Checkout completion: persist a Placed order with its first timeline event"""

    def __init__(
        self,
        unit_of_work,
        publishers: Sequence[UpdatePublisher] = (),
        order_number_prefix: str = "HMP",
        max_retries: int = 3,
        retry_delay: float = 0.2,
    ):
        self._uow = unit_of_work
        self._publishers = publishers
        self._prefix = order_number_prefix
        self._max_retries = max_retries
        self._retry_delay = retry_delay

    async def __call__(self, order_data: Union[CreateOrderDTO, dict]) -> Order:
        draft = self._coerce(order_data)
        validate_draft(draft)
        logger.info(f"Creating order for {draft.customer_email} ({len(draft.items)} items)")

        order = await with_storage_retries(
            lambda: self._create(draft), self._max_retries, self._retry_delay
        )
        logger.info(f"Order created: {order.id} ({order.order_number})")

        await publish_update(self._publishers, order)
        return order

    @staticmethod
    def _coerce(order_data) -> CreateOrderDTO:
        if isinstance(order_data, CreateOrderDTO):
            return order_data
        try:
            return CreateOrderDTO.model_validate(order_data)
        except pydantic.ValidationError as e:
            errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise ValidationError("Invalid order draft", errors) from e

    async def _create(self, draft: CreateOrderDTO) -> Order:
        async with self._uow() as uow:
            now = datetime.now(timezone.utc)
            order_number = await self._unique_order_number(uow.orders, now)
            order = Order(
                id=str(uuid.uuid4()),
                order_number=order_number,
                customer_id=draft.customer_id or None,
                customer_name=draft.customer_name,
                customer_email=draft.customer_email,
                items=draft.items,
                subtotal=draft.subtotal,
                shipping_cost=draft.shipping_cost,
                tax=draft.tax,
                total=draft.total,
                shipping_address=draft.shipping_address,
                payment_method=draft.payment_method,
                payment_status=PaymentStatus.PENDING,
                status=OrderStatus.PLACED,
                notes=draft.notes,
                created_at=now,
                updated_at=now,
                timeline=[
                    TimelineEvent(
                        status=OrderStatus.PLACED,
                        description=describe(OrderStatus.PLACED),
                        timestamp=now,
                        sequence=0,
                    )
                ],
            )
            await uow.orders.add(order)
            await uow.commit()
            return order

    async def _unique_order_number(self, orders: OrderRepository, now: datetime) -> str:
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            candidate = generate_order_number(self._prefix, now)
            if await orders.get_by_order_number(candidate) is None:
                return candidate
            logger.info(f"Order number {candidate} already taken, generating another")
        raise ConflictError("Could not allocate a unique order number")
