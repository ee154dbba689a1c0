"""Pytest fixtures for order tracking tests."""

import copy

import pytest

from order_tracking.application.create_order import CreateOrderUseCase
from order_tracking.application.subscriptions import OrderUpdateBroker
from order_tracking.application.transition_status import TransitionOrderStatusUseCase
from order_tracking.database import create_engine, create_session_factory, create_tables
from order_tracking.infrastructure.local_store import LocalOrderStorage, LocalUnitOfWork
from order_tracking.infrastructure.unit_of_work import UnitOfWork


DRAFT = {
    "customer_id": "cust-1",
    "customer_name": "Jane Doe",
    "customer_email": "jane@example.com",
    "items": [
        {
            "product_id": "prod-aura",
            "name": "Aura Headphones",
            "variant": "Sandstone",
            "price": "6000",
            "quantity": 1,
            "image_url": "/images/aura.jpg",
        },
        {
            "product_id": "prod-pulse",
            "name": "Pulse Band",
            "variant": None,
            "price": "2000",
            "quantity": 2,
            "image_url": "/images/pulse.jpg",
        },
    ],
    "subtotal": "10000",
    "shipping_cost": "0",
    "tax": "0",
    "total": "10000",
    "shipping_address": {
        "first_name": "Jane",
        "last_name": "Doe",
        "email": "jane@example.com",
        "phone": "+977 9800000000",
        "address": "12 Lakeside Road",
        "apartment": "Flat 3",
        "city": "Pokhara",
        "state": "Gandaki",
        "postal_code": "33700",
        "country": "Nepal",
    },
    "payment_method": "Cash on Delivery",
}


def make_draft(**overrides) -> dict:
    draft = copy.deepcopy(DRAFT)
    draft.update(overrides)
    return draft


@pytest.fixture
def draft():
    return make_draft()


@pytest.fixture
def local_uow():
    """In-memory local store."""
    return LocalUnitOfWork(LocalOrderStorage())


@pytest.fixture
async def sql_uow(tmp_path):
    """SQLAlchemy store on a throwaway SQLite file."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    await create_tables(engine)
    yield UnitOfWork(create_session_factory(engine))
    await engine.dispose()


@pytest.fixture(params=["local", "sql"])
async def uow(request, tmp_path):
    """Both store implementations behind the same contract."""
    if request.param == "local":
        yield LocalUnitOfWork(LocalOrderStorage(tmp_path / "orders.json"))
        return
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    await create_tables(engine)
    yield UnitOfWork(create_session_factory(engine))
    await engine.dispose()


@pytest.fixture
def broker():
    return OrderUpdateBroker()


@pytest.fixture
def create_order(uow, broker):
    return CreateOrderUseCase(uow, [broker], retry_delay=0)


@pytest.fixture
def transition(uow, broker):
    return TransitionOrderStatusUseCase(uow, [broker], retry_delay=0)
