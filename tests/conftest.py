"""
Pytest configuration and fixtures for the checkout tests.

Every test gets its own SQLite file (RETURNING needs sqlite >= 3.35).
"""
import itertools
from typing import Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio

from stockfront import mockgateway
from stockfront.checkout import CheckoutService
from stockfront.errors import GatewayUnavailableError
from stockfront.gateway import (
    Deposit, DepositGateway, HttpDepositGateway, RemoteStatus, R_PENDING,
)
from stockfront.infra.sql import make_async_engine
from stockfront.model.config import ConfigStore
from stockfront.model.db import create_schema
from stockfront.model.inventory import InventoryStore
from stockfront.model.orders import OrderStore
from stockfront.pricing import merchant_net

MOCK_KEY = "test-key"


class FakeGateway(DepositGateway):
    """Scriptable in-memory gateway."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.created: List[Deposit] = []
        self.cancelled: List[str] = []
        self.statuses: Dict[str, str] = {}
        # gateway_id -> (fee, received) reported by status queries
        self.settlements: Dict[str, Tuple[int, int]] = {}
        self.fail_create: Optional[Exception] = None
        self.fail_status: Optional[Exception] = None

    async def create_deposit(self, nominal: int, reference_id: str) -> Deposit:
        if self.fail_create is not None:
            raise self.fail_create
        dep = Deposit(
            gateway_id=f"DEP{next(self._ids)}",
            qr_payload=f"QR-{reference_id}",
            expires_at=None,
            nominal=nominal,
            fee=nominal - merchant_net(nominal),
            received=merchant_net(nominal),
        )
        self.created.append(dep)
        self.statuses[dep.gateway_id] = R_PENDING
        return dep

    async def cancel_deposit(self, gateway_id: str) -> bool:
        self.cancelled.append(gateway_id)
        return True

    async def query_status(self, gateway_id: str) -> RemoteStatus:
        if self.fail_status is not None:
            raise self.fail_status
        if gateway_id not in self.statuses:
            raise GatewayUnavailableError("unknown deposit")
        fee, received = self.settlements.get(gateway_id, (0, 0))
        return RemoteStatus(self.statuses[gateway_id], fee, received)

    async def check_connection(self, api_key: Optional[str] = None) -> bool:
        return True


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'stockfront-test.db'}"


@pytest_asyncio.fixture
async def db(database_url):
    engine, database = make_async_engine(database_url)
    async with engine.begin() as conn:
        await create_schema(conn)
    yield database
    await engine.dispose()


@pytest.fixture
def inventory(db) -> InventoryStore:
    return InventoryStore(db)


@pytest.fixture
def orders(db) -> OrderStore:
    return OrderStore(db)


@pytest.fixture
def config(db) -> ConfigStore:
    return ConfigStore(db)


@pytest_asyncio.fixture
async def product(inventory):
    """Product priced 50_000 with five free units."""
    p = await inventory.create_product("Netflix 1 month", 50_000)
    await inventory.add_units(p.id, [f"code-{i}" for i in range(1, 6)])
    return p


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def service(inventory, orders, config, fake_gateway) -> CheckoutService:
    return CheckoutService(
        inventory=inventory,
        orders=orders,
        config=config,
        gateway=fake_gateway,
    )


@pytest.fixture
def mock_state() -> mockgateway.MockGatewayState:
    return mockgateway.MockGatewayState(api_key=MOCK_KEY)


@pytest_asyncio.fixture
async def mock_http(mock_state):
    """httpx client wired straight into the in-process mock gateway."""
    transport = httpx.ASGITransport(app=mockgateway.create_app(mock_state))
    async with httpx.AsyncClient(transport=transport,
                                 base_url="http://mockgw") as client:
        yield client


@pytest.fixture
def http_gateway(mock_http) -> HttpDepositGateway:
    async def key():
        return MOCK_KEY
    return HttpDepositGateway(mock_http, key, base_url="http://mockgw")
