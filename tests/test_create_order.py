"""Tests for order creation at checkout completion."""

import re
from decimal import Decimal

import pytest

from conftest import make_draft
from order_tracking.application.create_order import CreateOrderDTO, CreateOrderUseCase
from order_tracking.application.get_order import GetOrderUseCase
from order_tracking.domain.exceptions import ConflictError, ValidationError
from order_tracking.domain.models import OrderStatus, PaymentMethod, PaymentStatus


async def test_scenario_a_two_items_placed(create_order, draft):
    order = await create_order(draft)

    assert len(order.items) == 2
    assert order.total == Decimal("10000")
    assert order.status == OrderStatus.PLACED
    assert len(order.timeline) == 1
    assert order.timeline[0].status == OrderStatus.PLACED
    assert order.timeline[0].description == "Order placed successfully"
    assert order.timeline[0].sequence == 0
    assert order.payment_status == PaymentStatus.PENDING
    assert order.payment_method == PaymentMethod.CASH_ON_DELIVERY
    assert order.created_at == order.updated_at == order.timeline[0].timestamp


async def test_order_number_format(uow, draft):
    order = await CreateOrderUseCase(uow, order_number_prefix="HMP")(draft)

    assert re.fullmatch(rf"HMP-{order.created_at.year}-\d{{6}}", order.order_number)


async def test_round_trip_by_id(uow, create_order, draft):
    created = await create_order(draft)
    loaded = await GetOrderUseCase(uow)(created.id)

    expected = CreateOrderDTO.model_validate(draft)
    assert [item.model_dump() for item in loaded.items] == [item.model_dump() for item in expected.items]
    assert loaded.shipping_address.model_dump() == expected.shipping_address.model_dump()
    assert loaded.shipping_address.full_name == "Jane Doe"
    assert (loaded.subtotal, loaded.shipping_cost, loaded.tax, loaded.total) == (
        expected.subtotal, expected.shipping_cost, expected.tax, expected.total
    )
    assert loaded.customer_id == "cust-1"
    assert loaded.model_dump() == created.model_dump()


async def test_guest_order_has_no_customer(create_order):
    order = await create_order(make_draft(customer_id=None))

    assert order.customer_id is None


async def test_accepts_dto(create_order, draft):
    order = await create_order(CreateOrderDTO.model_validate(draft))

    assert order.status == OrderStatus.PLACED


async def test_order_numbers_are_unique(create_order, draft):
    orders = [await create_order(draft) for _ in range(5)]

    assert len({order.order_number for order in orders}) == 5


class TestValidation:
    async def test_empty_items(self, create_order):
        with pytest.raises(ValidationError, match="at least one item"):
            await create_order(make_draft(items=[]))

    async def test_negative_total(self, create_order):
        with pytest.raises(ValidationError, match="total must not be negative"):
            await create_order(make_draft(subtotal="-5", total="-5"))

    async def test_total_must_add_up(self, create_order):
        with pytest.raises(ValidationError, match="subtotal"):
            await create_order(make_draft(shipping_cost="150", total="10000"))

    async def test_shipping_and_tax_count_toward_total(self, create_order):
        order = await create_order(make_draft(shipping_cost="150", tax="1300", total="11450"))

        assert order.total == Decimal("11450")

    async def test_blank_address_field(self, create_order, draft):
        draft["shipping_address"]["city"] = "  "

        with pytest.raises(ValidationError) as exc:
            await create_order(draft)
        assert "shipping_address.city is required" in exc.value.errors

    async def test_missing_address_field(self, create_order, draft):
        del draft["shipping_address"]["postal_code"]

        with pytest.raises(ValidationError):
            await create_order(draft)

    async def test_invalid_draft_stores_nothing(self, uow, create_order):
        from order_tracking.application.get_order import ListOrdersUseCase

        with pytest.raises(ValidationError):
            await create_order(make_draft(items=[]))
        assert await ListOrdersUseCase(uow)() == []


async def test_gives_up_when_order_numbers_keep_colliding(local_uow, draft, monkeypatch):
    from order_tracking.application import create_order as module

    monkeypatch.setattr(module, "generate_order_number", lambda prefix, now: "HMP-2026-000001")
    use_case = CreateOrderUseCase(local_uow, retry_delay=0)
    await use_case(draft)

    with pytest.raises(ConflictError):
        await use_case(draft)


class TestMoneyPrecision:
    async def test_cents_survive_reload(self, uow, create_order):
        draft = make_draft(subtotal="10000.45", shipping_cost="150.50", tax="0.05", total="10151.00")

        created = await create_order(draft)
        loaded = await GetOrderUseCase(uow)(created.id)

        assert loaded.subtotal == Decimal("10000.45")
        assert loaded.shipping_cost == Decimal("150.50")
        assert loaded.tax == Decimal("0.05")
        assert loaded.total == loaded.subtotal + loaded.shipping_cost + loaded.tax

    @pytest.mark.parametrize("amounts", [
        {"subtotal": "9999.995", "shipping_cost": "0.005", "tax": "0", "total": "10000.000"},
        {"subtotal": "0.001", "shipping_cost": "0", "tax": "0", "total": "0.001"},
        {"subtotal": "10000000000", "shipping_cost": "0", "tax": "0", "total": "10000000000"},
    ])
    async def test_amounts_the_store_cannot_hold_are_rejected(self, uow, create_order, amounts):
        from order_tracking.application.get_order import ListOrdersUseCase

        with pytest.raises(ValidationError) as exc:
            await create_order(make_draft(**amounts))

        assert "decimal places" in str(exc.value)
        assert await ListOrdersUseCase(uow)() == []

    async def test_largest_storable_amount(self, uow, create_order):
        amount = "9999999999.99"
        created = await create_order(make_draft(subtotal=amount, total=amount))

        loaded = await GetOrderUseCase(uow)(created.id)

        assert loaded.total == Decimal(amount)

    async def test_item_price_precision(self, create_order, draft):
        draft["items"][0]["price"] = "5999.999"

        with pytest.raises(ValidationError):
            await create_order(draft)
