from sqlalchemy import (
    Table, Column, String, Integer, Numeric, Text, DateTime, JSON, MetaData, ForeignKey,
    UniqueConstraint, Index
)
from sqlalchemy.sql import func

from order_tracking.domain.models import MONEY_DECIMAL_PLACES, MONEY_MAX_DIGITS

metadata = MetaData()


orders_tbl = Table(
    "orders",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_number", String, nullable=False, unique=True, index=True),
    Column("user_id", String, nullable=True, index=True),
    Column("customer_name", String, nullable=False),
    Column("customer_email", String, nullable=False),
    Column("items", JSON, nullable=False),
    Column("subtotal", Numeric(MONEY_MAX_DIGITS, MONEY_DECIMAL_PLACES), nullable=False),
    Column("shipping", Numeric(MONEY_MAX_DIGITS, MONEY_DECIMAL_PLACES), nullable=False, default=0),
    Column("tax", Numeric(MONEY_MAX_DIGITS, MONEY_DECIMAL_PLACES), nullable=False, default=0),
    Column("total", Numeric(MONEY_MAX_DIGITS, MONEY_DECIMAL_PLACES), nullable=False),
    Column("status", String(32), nullable=False, default="placed"),
    Column("payment_status", String(16), nullable=False, default="pending"),
    Column("payment_method", String, nullable=False),
    Column("shipping_address", JSON, nullable=False),
    Column("tracking_number", String, nullable=True),
    Column("estimated_delivery", String, nullable=True),
    Column("notes", Text, nullable=True),
    Column("version", Integer, nullable=False, default=1),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
)

# Case-insensitive, NULLs allowed
Index("uq_orders_tracking_number", func.lower(orders_tbl.c.tracking_number), unique=True)


order_timeline_tbl = Table(
    "order_timeline",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
    Column("sequence", Integer, nullable=False),
    Column("status", String(32), nullable=False),
    Column("description", Text, nullable=False),
    Column("location", String, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    UniqueConstraint("order_id", "sequence", name="uq_order_timeline_order_sequence"),
    Index("ix_order_timeline_order_id", "order_id"),
)
