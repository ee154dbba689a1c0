"""Tests for the two order store implementations."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_draft
from order_tracking.application.create_order import CreateOrderUseCase
from order_tracking.domain.exceptions import ConflictError, OrderNotFoundError, StorageError
from order_tracking.domain.models import OrderStatus, TimelineEvent
from order_tracking.infrastructure.local_store import LocalOrderStorage, LocalUnitOfWork


def _event(status: OrderStatus, sequence: int) -> TimelineEvent:
    return TimelineEvent(
        status=status,
        description=f"{status.value} by test",
        timestamp=datetime.now(timezone.utc) + timedelta(seconds=sequence),
        sequence=sequence,
    )


async def test_append_sets_status_and_event_together(uow, draft):
    order = await CreateOrderUseCase(uow)(draft)

    async with uow() as tx:
        updated = await tx.orders.append_timeline_event(order.id, _event(OrderStatus.SHIPPED, 1), order.version)
        await tx.commit()

    assert updated.status == OrderStatus.SHIPPED
    assert updated.version == order.version + 1
    assert [e.status for e in updated.timeline] == [OrderStatus.PLACED, OrderStatus.SHIPPED]


async def test_uncommitted_append_is_rolled_back(uow, draft):
    order = await CreateOrderUseCase(uow)(draft)

    async with uow() as tx:
        await tx.orders.append_timeline_event(order.id, _event(OrderStatus.SHIPPED, 1), order.version)

    async with uow() as tx:
        reloaded = await tx.orders.get_by_id(order.id)
    assert reloaded.status == OrderStatus.PLACED
    assert len(reloaded.timeline) == 1


async def test_stale_writer_gets_conflict(uow, draft):
    order = await CreateOrderUseCase(uow)(draft)

    async with uow() as first:
        async with uow() as second:
            seen_by_first = await first.orders.get_by_id(order.id)
            seen_by_second = await second.orders.get_by_id(order.id)

            await first.orders.append_timeline_event(
                order.id, _event(OrderStatus.CONFIRMED, 1), seen_by_first.version
            )
            await first.commit()

            with pytest.raises(ConflictError):
                await second.orders.append_timeline_event(
                    order.id, _event(OrderStatus.CANCELLED, 1), seen_by_second.version
                )
                await second.commit()

    async with uow() as tx:
        reloaded = await tx.orders.get_by_id(order.id)
    assert reloaded.status == OrderStatus.CONFIRMED
    assert [e.status for e in reloaded.timeline] == [OrderStatus.PLACED, OrderStatus.CONFIRMED]


async def test_tracking_number_held_by_one_order(uow, draft):
    first = await CreateOrderUseCase(uow)(draft)
    second = await CreateOrderUseCase(uow)(draft)

    async with uow() as tx_a:
        async with uow() as tx_b:
            await tx_a.orders.update_tracking(first.id, "NP-100", None, first.version)
            await tx_a.commit()

            with pytest.raises(ConflictError):
                await tx_b.orders.update_tracking(second.id, "np-100", None, second.version)
                await tx_b.commit()

    async with uow() as tx:
        holder = await tx.orders.get_by_tracking_number("NP-100")
        untouched = await tx.orders.get_by_id(second.id)
    assert holder.id == first.id
    assert untouched.tracking_number is None


async def test_append_to_missing_order(uow):
    async with uow() as tx:
        with pytest.raises(OrderNotFoundError):
            await tx.orders.append_timeline_event("missing", _event(OrderStatus.SHIPPED, 1), 1)


async def test_timeline_returned_in_append_order(uow, draft):
    order = await CreateOrderUseCase(uow)(draft)
    statuses = [OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPED]
    version = order.version
    for sequence, status in enumerate(statuses, start=1):
        # Wall clock going backwards must not reorder the timeline
        event = TimelineEvent(
            status=status,
            description=status.value,
            timestamp=datetime(2020, 1, 1, tzinfo=timezone.utc) - timedelta(days=sequence),
            sequence=sequence,
        )
        async with uow() as tx:
            updated = await tx.orders.append_timeline_event(order.id, event, version)
            await tx.commit()
        version = updated.version

    async with uow() as tx:
        reloaded = await tx.orders.get_by_id(order.id)
    assert [e.status for e in reloaded.timeline] == [OrderStatus.PLACED] + statuses
    assert [e.sequence for e in reloaded.timeline] == [0, 1, 2, 3]


class TestLocalStorage:
    async def test_persists_to_json_file(self, tmp_path, draft):
        path = tmp_path / "store" / "orders.json"
        order = await CreateOrderUseCase(LocalUnitOfWork(LocalOrderStorage(path)))(draft)

        data = json.loads(path.read_text())
        assert data["schema_version"] == 1
        assert [record["order_number"] for record in data["orders"]] == [order.order_number]

        reopened = LocalOrderStorage(path)
        assert reopened.get(order.id).model_dump() == order.model_dump()

    async def test_in_memory_without_path(self, tmp_path, draft):
        storage = LocalOrderStorage()
        order = await CreateOrderUseCase(LocalUnitOfWork(storage))(draft)

        assert storage.get(order.id) is not None
        assert list(tmp_path.iterdir()) == []

    async def test_conflict_detected_at_commit(self, draft):
        storage = LocalOrderStorage()
        uow = LocalUnitOfWork(storage)
        order = await CreateOrderUseCase(uow)(draft)

        async with uow() as first:
            async with uow() as second:
                await first.orders.append_timeline_event(order.id, _event(OrderStatus.SHIPPED, 1), 1)
                await second.orders.append_timeline_event(order.id, _event(OrderStatus.RETURNED, 1), 1)
                await first.commit()
                with pytest.raises(ConflictError):
                    await second.commit()

        assert storage.get(order.id).status == OrderStatus.SHIPPED
        assert len(storage.get(order.id).timeline) == 2

    async def test_failed_write_keeps_memory_state(self, tmp_path, draft, monkeypatch):
        storage = LocalOrderStorage(tmp_path / "orders.json")
        uow = LocalUnitOfWork(storage)
        order = await CreateOrderUseCase(uow)(draft)

        def broken(path, records):
            raise StorageError("read-only filesystem")

        monkeypatch.setattr(storage, "_write", broken)
        async with uow() as tx:
            await tx.orders.append_timeline_event(order.id, _event(OrderStatus.SHIPPED, 1), 1)
            with pytest.raises(StorageError):
                await tx.commit()

        assert storage.get(order.id).status == OrderStatus.PLACED

    async def test_duplicate_order_number_rejected(self, draft):
        storage = LocalOrderStorage()
        uow = LocalUnitOfWork(storage)
        order = await CreateOrderUseCase(uow)(draft)
        clone = order.model_copy(update={"id": "another-id"})

        async with uow() as tx:
            await tx.orders.add(clone)
            with pytest.raises(ConflictError):
                await tx.commit()

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "orders.json"
        path.write_text("{not json")

        with pytest.raises(StorageError):
            LocalOrderStorage(path)


async def test_sql_duplicate_order_number_is_conflict(sql_uow, draft):
    order = await CreateOrderUseCase(sql_uow)(make_draft())
    clone = order.model_copy(update={"id": "another-id"})

    with pytest.raises(ConflictError):
        async with sql_uow() as tx:
            await tx.orders.add(clone)
            await tx.commit()
