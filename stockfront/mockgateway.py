"""
In-process stand-in for the QR deposit gateway.

Speaks the same form-encoded protocol as the real one (`/deposit/create`,
`/deposit/cancel`, `/deposit/status`, `/deposit/metode`) and adds an
operator endpoint `/deposit/{id}/emit` that moves a deposit to `success`,
`processing`, `cancel` or `expired`, like paying the QR code would.
"""
from __future__ import annotations
import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from fastapi import FastAPI, Form
from fastapi.responses import ORJSONResponse

from .helpers import ct_equal
from .pricing import merchant_net

MOCK_API_KEY = os.environ.get("MOCK_GATEWAY_API_KEY", "mock-key")
MOCK_DEPOSIT_TTL_SECONDS = int(os.environ.get("MOCK_DEPOSIT_TTL_SECONDS", "1800"))
_WIB = timezone(timedelta(hours=7))

EMITTABLE = {"success", "processing", "cancel", "expired"}


@dataclass
class MockDeposit:
    id: str
    reff_id: str
    nominal: int
    status: str = "pending"
    created_at: float = field(default_factory=time.time)

    @property
    def expires_at(self) -> float:
        return self.created_at + MOCK_DEPOSIT_TTL_SECONDS

    def as_data(self) -> dict:
        received = merchant_net(self.nominal)
        return {
            "id": self.id,
            "reff_id": self.reff_id,
            "nominal": self.nominal,
            "fee": self.nominal - received,
            "get_balance": received,
            "qr_string": f"00020101021226MOCKQRIS{self.id}5204{self.nominal}",
            "status": self.status,
            "expired_at": datetime.fromtimestamp(self.expires_at, tz=_WIB)
            .strftime("%Y-%m-%d %H:%M:%S"),
        }


class MockGatewayState:
    def __init__(self, api_key: str = MOCK_API_KEY) -> None:
        self.api_key = api_key
        self.deposits: Dict[str, MockDeposit] = {}
        self.by_reff: Dict[str, str] = {}

    def authorized(self, key: Optional[str]) -> bool:
        return bool(key) and ct_equal(key, self.api_key)

    def refresh(self, dep: MockDeposit) -> MockDeposit:
        if dep.status == "pending" and time.time() >= dep.expires_at:
            dep.status = "expired"
        return dep


def _fail(message: str) -> dict:
    return {"status": False, "message": message}


def create_app(state: Optional[MockGatewayState] = None) -> FastAPI:
    st = state or MockGatewayState()
    app = FastAPI(title="MockGateway", default_response_class=ORJSONResponse)
    app.state.gateway = st

    @app.post("/deposit/create")
    async def deposit_create(
        api_key: str = Form(""),
        reff_id: str = Form(""),
        nominal: int = Form(0),
        type: str = Form("ewallet"),
        metode: str = Form("QRIS"),
    ):
        if not st.authorized(api_key):
            return _fail("Invalid api key")
        if nominal <= 0:
            return _fail("Invalid nominal")
        if not reff_id or reff_id in st.by_reff:
            return _fail("Duplicate or missing reff_id")
        dep = MockDeposit(id=f"MOCK{uuid.uuid4().hex[:12].upper()}",
                          reff_id=reff_id, nominal=nominal)
        st.deposits[dep.id] = dep
        st.by_reff[reff_id] = dep.id
        return {"status": True, "data": dep.as_data()}

    @app.post("/deposit/cancel")
    async def deposit_cancel(api_key: str = Form(""), id: str = Form("")):
        if not st.authorized(api_key):
            return _fail("Invalid api key")
        dep = st.deposits.get(id)
        if dep is None:
            return _fail("Deposit not found")
        st.refresh(dep)
        if dep.status not in ("pending", "cancel"):
            return _fail(f"Deposit already {dep.status}")
        dep.status = "cancel"
        return {"status": True, "data": dep.as_data()}

    @app.post("/deposit/status")
    async def deposit_status(api_key: str = Form(""), id: str = Form("")):
        if not st.authorized(api_key):
            return _fail("Invalid api key")
        dep = st.deposits.get(id)
        if dep is None:
            return _fail("Deposit not found")
        return {"status": True, "data": st.refresh(dep).as_data()}

    @app.post("/deposit/metode")
    async def deposit_metode(api_key: str = Form(""), type: str = Form("")):
        if not st.authorized(api_key):
            return _fail("Invalid api key")
        return {"status": True, "data": [
            {"metode": "QRIS", "type": "ewallet", "min": 1000,
             "max": 10_000_000},
        ]}

    # operator shortcut: what the buyer's e-wallet would do
    @app.post("/deposit/{deposit_id}/emit")
    async def deposit_emit(deposit_id: str, t: str = Form(...)):
        if t not in EMITTABLE:
            return _fail("invalid kind")
        dep = st.deposits.get(deposit_id)
        if dep is None:
            return _fail("Deposit not found")
        dep.status = t
        return {"status": True, "data": dep.as_data()}

    return app


app = create_app()
