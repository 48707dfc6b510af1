"""
Shared fixtures: a throwaway SQLite database per test, seed helpers and
an HTTP client wired to it.
"""

import os

# must be set before foody is imported; settings are cached on first use
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./foody-test.db"
os.environ["WRITE_RETRY_DELAY"] = "0.01"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"

import httpx
import pytest

from foody import main
from foody.database import build_engine, build_session_maker, get_db, init_db
from foody.models import OrderStatus, Product
from foody.services.cart import CartProduct, MemoryCartStore
from foody.services.checkout import CheckoutConverter
from foody.services.identity import Identity, Role
from foody.services.order_state import FORWARD_PATH, OrderStateMachine

CUSTOMER = Identity(user_id=7, role=Role.CUSTOMER)
OTHER_CUSTOMER = Identity(user_id=8, role=Role.CUSTOMER)
STAFF = Identity(user_id=100, role=Role.STAFF)
ADMIN = Identity(user_id=1, role=Role.ADMIN)


def headers_for(identity: Identity) -> dict[str, str]:
    return {"X-User-Id": str(identity.user_id), "X-User-Role": identity.role.value}


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'foody.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def make_product(session_maker):
    """Insert a product and return it (detached, fully loaded)."""
    async def _make(**overrides) -> Product:
        fields = {
            "name": "Chicken Momo",
            "description": "Steamed dumplings",
            "price": 250.0,
            "image": "momo.jpg",
            "is_veg": False,
        }
        fields.update(overrides)
        async with session_maker() as s:
            product = Product(**fields)
            s.add(product)
            await s.commit()
            return product
    return _make


@pytest.fixture
def make_order(session_maker):
    """
    Place an order through checkout and walk it to ``status``.

    ``lines`` is a list of (product, quantity).
    """
    async def _make(lines, user_id=CUSTOMER.user_id, status=OrderStatus.PENDING):
        cart = MemoryCartStore()
        for product, quantity in lines:
            cart.add(
                user_id,
                CartProduct(id=product.id, name=product.name, price=product.price, image=product.image),
                quantity,
            )
        async with session_maker() as s:
            order = await CheckoutConverter(s, cart).place_order(user_id, table_number="4")

        if status == OrderStatus.CANCELLED:
            async with session_maker() as s:
                order = await OrderStateMachine(s).cancel(order.id)
        elif status != OrderStatus.PENDING:
            async with session_maker() as s:
                machine = OrderStateMachine(s)
                for step in FORWARD_PATH[1:FORWARD_PATH.index(status) + 1]:
                    order = await machine.transition(order.id, step)
        return order
    return _make


class RecordingTask:
    """Stands in for a Celery task; remembers what was queued."""

    def __init__(self):
        self.calls = []

    def delay(self, *args, **kwargs):
        self.calls.append(args)


@pytest.fixture
def ledger_task(monkeypatch):
    task = RecordingTask()
    monkeypatch.setattr(main, "export_bill_to_ledger", task)
    return task


@pytest.fixture
async def client(session_maker, ledger_task):
    async def _get_db():
        async with session_maker() as session:
            yield session

    main.app.dependency_overrides[get_db] = _get_db
    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    main.app.dependency_overrides.clear()
