import asyncio
import json
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from order_tracking.domain.models import Order, TimelineEvent
from order_tracking.domain.exceptions import ConflictError, OrderNotFoundError, StorageError
from order_tracking.application.interfaces import OrderFilter, OrderRepository

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class LocalOrderStorage:
    """
    Fallback store used when no database is configured.

    Orders live in memory as JSON records (timeline nested) and, when a path
    is given, are written to a single JSON file on every commit. The file is
    replaced atomically; a failed write leaves both disk and memory as they
    were.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else None
        self._records: Dict[str, dict] = {}
        self._lock = asyncio.Lock()
        if self.path is not None and self.path.exists():
            self._records = self._load(self.path)
            logger.info(f"Loaded {len(self._records)} orders from {self.path}")

    @staticmethod
    def _load(path: Path) -> Dict[str, dict]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Could not read order store {path}: {e}") from e
        return {record["id"]: record for record in data.get("orders", [])}

    def get(self, order_id: str) -> Optional[Order]:
        record = self._records.get(order_id)
        return Order.model_validate(record) if record else None

    def all(self) -> List[Order]:
        return [Order.model_validate(record) for record in self._records.values()]

    async def apply(self, changes: List[Tuple[Order, Optional[int]]]) -> None:
        """
        Apply staged writes all-or-nothing.

        Each change is (order, expected_version); expected_version None means
        a new order.
        """
        if not changes:
            return
        async with self._lock:
            records = dict(self._records)
            for order, expected_version in changes:
                current = records.get(order.id)
                if expected_version is None:
                    if current is not None:
                        raise ConflictError(f"Order {order.id} already exists")
                    if any(r["order_number"] == order.order_number for r in records.values()):
                        raise ConflictError(f"Order number {order.order_number} already exists")
                else:
                    if current is None:
                        raise OrderNotFoundError(f"Order {order.id} not found")
                    if current["version"] != expected_version:
                        raise ConflictError(
                            f"Order {order.id} was modified concurrently "
                            f"(expected version {expected_version}, found {current['version']})"
                        )
                if order.tracking_number:
                    needle = order.tracking_number.lower()
                    holder = next(
                        (r for r in records.values()
                         if r["id"] != order.id and (r.get("tracking_number") or "").lower() == needle),
                        None,
                    )
                    if holder is not None:
                        raise ConflictError(
                            f"Tracking number {order.tracking_number} already belongs to order {holder['order_number']}"
                        )
                records[order.id] = order.model_dump(mode="json")

            if self.path is not None:
                await asyncio.to_thread(self._write, self.path, records)
            self._records = records

    @staticmethod
    def _write(path: Path, records: Dict[str, dict]) -> None:
        payload = {"schema_version": SCHEMA_VERSION, "orders": list(records.values())}
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StorageError(f"Could not write order store {path}: {e}") from e


class LocalOrderRepository(OrderRepository):
    """Reads see this unit of work's staged writes; nothing is stored before commit."""

    def __init__(self, storage: LocalOrderStorage):
        self._storage = storage
        self._staged: Dict[str, Order] = {}
        self._changes: List[Tuple[Order, Optional[int]]] = []

    def _current(self) -> List[Order]:
        orders = {order.id: order for order in self._storage.all()}
        orders.update(self._staged)
        return list(orders.values())

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        staged = self._staged.get(order_id)
        return staged if staged is not None else self._storage.get(order_id)

    async def get_by_order_number(self, order_number: str) -> Optional[Order]:
        needle = order_number.strip().lower()
        return next((o for o in self._current() if o.order_number.lower() == needle), None)

    async def get_by_tracking_number(self, tracking_number: str) -> Optional[Order]:
        needle = tracking_number.strip().lower()
        return next(
            (o for o in self._current() if o.tracking_number and o.tracking_number.lower() == needle),
            None,
        )

    async def list_by_customer(self, customer_id: str) -> List[Order]:
        orders = [o for o in self._current() if o.customer_id == customer_id]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    async def list_all(self, order_filter: Optional[OrderFilter] = None) -> List[Order]:
        order_filter = order_filter or OrderFilter()
        orders = [o for o in self._current() if order_filter.matches(o)]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    async def add(self, order: Order) -> None:
        self._staged[order.id] = order
        self._changes.append((order, None))

    async def append_timeline_event(
        self, order_id: str, event: TimelineEvent, expected_version: int
    ) -> Order:
        order = await self._for_update(order_id, expected_version)
        updated = order.with_event(event)
        self._stage(updated, expected_version)
        return updated

    async def update_tracking(
        self,
        order_id: str,
        tracking_number: Optional[str],
        estimated_delivery: Optional[str],
        expected_version: int,
    ) -> Order:
        order = await self._for_update(order_id, expected_version)
        updated = order.model_copy(update={
            "tracking_number": tracking_number,
            "estimated_delivery": estimated_delivery,
            "updated_at": datetime.now(timezone.utc),
            "version": order.version + 1,
        })
        self._stage(updated, expected_version)
        return updated

    async def _for_update(self, order_id: str, expected_version: int) -> Order:
        order = await self.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        if order.version != expected_version:
            raise ConflictError(
                f"Order {order_id} was modified concurrently "
                f"(expected version {expected_version}, found {order.version})"
            )
        return order

    def _stage(self, order: Order, expected_version: int) -> None:
        self._staged[order.id] = order
        self._changes.append((order, expected_version))

    def pending_changes(self) -> List[Tuple[Order, Optional[int]]]:
        return list(self._changes)

    def discard(self) -> None:
        self._staged.clear()
        self._changes.clear()


class LocalUnitOfWork:
    def __init__(self, storage: LocalOrderStorage):
        self._storage = storage

    @asynccontextmanager
    async def __call__(self):
        uow_impl = _LocalUnitOfWorkImpl(self._storage)
        try:
            yield uow_impl
        finally:
            # No commit -> rollback
            uow_impl.orders.discard()


class _LocalUnitOfWorkImpl:
    def __init__(self, storage: LocalOrderStorage):
        self._storage = storage
        self.orders = LocalOrderRepository(storage)

    async def commit(self):
        await self._storage.apply(self.orders.pending_changes())
        self.orders.discard()

    async def rollback(self):
        self.orders.discard()
