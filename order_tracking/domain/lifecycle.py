from typing import Optional

from order_tracking.domain.models import OrderStatus, TERMINAL_STATUSES


# Rank used by progress bars: Cancelled/Returned never progress
NON_PROGRESSING = -1

PROGRESS_RANKS = {
    OrderStatus.PLACED: 0,
    OrderStatus.CONFIRMED: 1,
    OrderStatus.PROCESSING: 1,
    OrderStatus.SHIPPED: 2,
    OrderStatus.OUT_FOR_DELIVERY: 2,
    OrderStatus.DELIVERED: 3,
    OrderStatus.CANCELLED: NON_PROGRESSING,
    OrderStatus.RETURNED: NON_PROGRESSING,
}

MAX_PROGRESS_RANK = 3

STATUS_DESCRIPTIONS = {
    OrderStatus.PLACED: "Order placed successfully",
    OrderStatus.CONFIRMED: "Order has been confirmed and is being prepared",
    OrderStatus.PROCESSING: "Order is being processed and packed",
    OrderStatus.SHIPPED: "Order has been shipped",
    OrderStatus.OUT_FOR_DELIVERY: "Order is out for delivery",
    OrderStatus.DELIVERED: "Order has been delivered successfully",
    OrderStatus.CANCELLED: "Order has been cancelled",
    OrderStatus.RETURNED: "Order has been returned",
}

EXCEPTION_STATUSES = (OrderStatus.CANCELLED, OrderStatus.RETURNED)


def progress_rank(status: OrderStatus) -> int:
    return PROGRESS_RANKS[OrderStatus.parse(status)]


def describe(status: OrderStatus, description: Optional[str] = None) -> str:
    """Caller's description wins; blank falls back to the canonical text."""
    if description and description.strip():
        return description.strip()
    return STATUS_DESCRIPTIONS[status]


def is_terminal(status: OrderStatus) -> bool:
    return OrderStatus.parse(status) in TERMINAL_STATUSES


def allowed_admin_statuses(current: OrderStatus) -> list[OrderStatus]:
    """
    Statuses offered by the admin status selector.

    Forward-or-same progress plus Cancelled/Returned. Not a guard: the
    transition use case only refuses changes to terminal orders.
    """
    current = OrderStatus.parse(current)
    if current in TERMINAL_STATUSES:
        return []
    rank = PROGRESS_RANKS[current]
    forward = [
        status for status in OrderStatus
        if status not in EXCEPTION_STATUSES and PROGRESS_RANKS[status] >= rank
    ]
    return forward + list(EXCEPTION_STATUSES)
