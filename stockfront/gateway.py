from __future__ import annotations
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from .errors import GatewayRejectedError, GatewayUnavailableError
from .infra.timings import timeit

log = logging.getLogger(__name__)

GATEWAY_BASE_URL = os.environ.get(
    "GATEWAY_BASE_URL", "http://localhost:8000/mockgateway"
)
GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "10"))
# naive timestamps from the gateway are in its local time (WIB)
GATEWAY_UTC_OFFSET_HOURS = int(os.environ.get("GATEWAY_UTC_OFFSET_HOURS", "7"))

# remote status strings
R_PENDING = "pending"
R_PROCESSING = "processing"
R_SUCCESS = "success"
R_CANCELLED = "cancel"
R_EXPIRED = "expired"

_STATUS_ALIASES = {
    "pending": R_PENDING,
    "processing": R_PROCESSING,
    "success": R_SUCCESS,
    "cancel": R_CANCELLED,
    "canceled": R_CANCELLED,
    "cancelled": R_CANCELLED,
    "expired": R_EXPIRED,
}

ApiKeySource = Callable[[], Awaitable[Optional[str]]]


@dataclass(frozen=True)
class Deposit:
    gateway_id: str
    qr_payload: str
    expires_at: Optional[float]
    nominal: int
    fee: int
    received: int


@dataclass(frozen=True)
class RemoteStatus:
    status: str
    fee: int = 0
    received: int = 0


# ----------------------------
# Gateway Interface
# ----------------------------
class DepositGateway(ABC):
    @abstractmethod
    async def create_deposit(self, nominal: int, reference_id: str) -> Deposit:
        ...

    # False when the gateway did not confirm; never raises for that
    @abstractmethod
    async def cancel_deposit(self, gateway_id: str) -> bool:
        ...

    @abstractmethod
    async def query_status(self, gateway_id: str) -> RemoteStatus:
        ...

    @abstractmethod
    async def check_connection(self, api_key: Optional[str] = None) -> bool:
        ...


def _parse_expiry(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        dt = datetime.fromisoformat(str(value).strip())
    except ValueError:
        raise GatewayUnavailableError(f"unparseable expiry: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(
            tzinfo=timezone(timedelta(hours=GATEWAY_UTC_OFFSET_HOURS))
        )
    return dt.timestamp()


def _int(data: Dict[str, Any], *keys: str) -> int:
    # the gateway is inconsistent about fee / merchant_fee naming
    for k in keys:
        v = data.get(k)
        if v not in (None, ""):
            try:
                return int(float(v))
            except (TypeError, ValueError):
                raise GatewayUnavailableError(f"non-numeric {k}: {v!r}")
    return 0


def normalize_status(raw: Any) -> str:
    status = _STATUS_ALIASES.get(str(raw or "").strip().lower())
    if status is None:
        raise GatewayUnavailableError(f"unknown deposit status: {raw!r}")
    return status


# ----------------------------
# HTTP implementation
# ----------------------------
class HttpDepositGateway(DepositGateway):
    """Form-encoded deposit API with a `{status, message, data}` envelope."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: ApiKeySource,
        base_url: str = GATEWAY_BASE_URL,
        timeout: float = GATEWAY_TIMEOUT_SECONDS,
    ) -> None:
        self.http = http
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _key(self) -> str:
        key = await self.api_key()
        if not key:
            raise GatewayRejectedError("gateway api key not configured")
        return key

    async def _post(self, path: str, form: Dict[str, str]) -> Dict[str, Any]:
        try:
            r = await self.http.post(
                f"{self.base_url}{path}", data=form, timeout=self.timeout
            )
            r.raise_for_status()
            body = r.json()
        except httpx.HTTPError as e:
            raise GatewayUnavailableError(f"{path}: {e.__class__.__name__}: {e}")
        except ValueError:
            raise GatewayUnavailableError(f"{path}: response is not JSON")
        if not isinstance(body, dict) or "status" not in body:
            raise GatewayUnavailableError(f"{path}: malformed envelope")
        if body["status"] is not True:
            raise GatewayRejectedError(
                str(body.get("message") or f"{path} refused")
            )
        return body

    @staticmethod
    def _data(body: Dict[str, Any], path: str) -> Dict[str, Any]:
        data = body.get("data")
        if not isinstance(data, dict):
            raise GatewayUnavailableError(f"{path}: envelope without data")
        return data

    async def create_deposit(self, nominal: int, reference_id: str) -> Deposit:
        path = "/deposit/create"
        async with timeit("gateway.create"):
            body = await self._post(path, {
                "api_key": await self._key(),
                "reff_id": reference_id,
                "nominal": str(int(nominal)),
                "type": "ewallet",
                "metode": "QRIS",
            })
        data = self._data(body, path)
        if not data.get("id"):
            raise GatewayUnavailableError(f"{path}: deposit without id")
        gateway_id = str(data["id"])
        try:
            deposit = Deposit(
                gateway_id=gateway_id,
                qr_payload=str(data.get("qr_string") or data.get("qr_image") or ""),
                expires_at=_parse_expiry(data.get("expired_at")),
                nominal=_int(data, "nominal") or int(nominal),
                fee=_int(data, "fee", "merchant_fee"),
                received=_int(data, "get_balance"),
            )
        except GatewayUnavailableError:
            # the deposit exists remotely but we cannot use it
            await self.cancel_deposit(gateway_id)
            raise
        log.info("deposit created", extra={
            "reference_id": reference_id,
            "gateway_id": deposit.gateway_id,
            "nominal": deposit.nominal,
        })
        return deposit

    async def cancel_deposit(self, gateway_id: str) -> bool:
        try:
            async with timeit("gateway.cancel"):
                await self._post("/deposit/cancel", {
                    "api_key": await self._key(),
                    "id": gateway_id,
                })
        except (GatewayUnavailableError, GatewayRejectedError) as e:
            log.warning("deposit cancel not confirmed", extra={
                "gateway_id": gateway_id, "reason": str(e),
            })
            return False
        log.info("deposit cancelled", extra={"gateway_id": gateway_id})
        return True

    async def query_status(self, gateway_id: str) -> RemoteStatus:
        path = "/deposit/status"
        async with timeit("gateway.status"):
            body = await self._post(path, {
                "api_key": await self._key(),
                "id": gateway_id,
            })
        data = self._data(body, path)
        return RemoteStatus(
            status=normalize_status(data.get("status")),
            fee=_int(data, "fee", "merchant_fee"),
            received=_int(data, "get_balance"),
        )

    async def check_connection(self, api_key: Optional[str] = None) -> bool:
        try:
            await self._post("/deposit/metode", {
                "api_key": api_key or await self._key(),
                "type": "ewallet",
            })
        except (GatewayUnavailableError, GatewayRejectedError) as e:
            log.info("gateway check failed", extra={"reason": str(e)})
            return False
        return True
