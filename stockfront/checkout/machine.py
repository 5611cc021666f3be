"""
Order lifecycle.

    PENDING --remote success/processing, approve--> PAID
    PENDING --remote cancel/expired, cancel-------> CANCELLED
    PENDING --manual order past its ttl-----------> EXPIRED
    PENDING --delivery finds units missing--------> PAID_UNFULFILLED --approve--> PAID

`decide()` is the only place that knows these rules. The service below
executes what it returns; the store's conditional UPDATEs make sure a
concurrent caller cannot flip an order that was already closed.
"""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from typing import List, Optional

from .. import pricing
from ..errors import (
    DeliveryError, GatewayRejectedError, GatewayUnavailableError,
    InvalidRequestError, InvalidTransitionError, OrderNotFoundError,
    PersistenceError, ProductNotFoundError, StoreClosedError,
)
from ..gateway import (
    DepositGateway, Deposit,
    R_CANCELLED, R_EXPIRED, R_PENDING, R_PROCESSING, R_SUCCESS,
)
from ..helpers import clean_email, new_order_id, new_ref_code, now_ts
from ..infra.timings import timeit
from ..model.config import ConfigStore
from ..model.db import (
    Order, CANCELLED, EXPIRED, FAILED, PAID, PAID_UNFULFILLED, PENDING,
    GATEWAY_AUTO, MANUAL,
)
from ..model.inventory import InventoryStore
from ..model.orders import OrderStore
from . import store_hours
from .delivery import DeliveryEngine
from .reservations import ReservationManager

log = logging.getLogger(__name__)

MANUAL_ORDER_TTL_SECONDS = int(
    os.environ.get("MANUAL_ORDER_TTL_SECONDS", str(24 * 3600))
)

# ----------------------------
# Events
# ----------------------------
E_REMOTE_SUCCESS = "remote_success"
E_REMOTE_PROCESSING = "remote_processing"
E_REMOTE_PENDING = "remote_pending"
E_REMOTE_CANCELLED = "remote_cancelled"
E_REMOTE_EXPIRED = "remote_expired"
E_APPROVE = "approve"
E_CANCEL = "cancel"
E_LOCAL_EXPIRED = "local_expired"

REMOTE_EVENTS = {
    R_SUCCESS: E_REMOTE_SUCCESS,
    R_PROCESSING: E_REMOTE_PROCESSING,
    R_PENDING: E_REMOTE_PENDING,
    R_CANCELLED: E_REMOTE_CANCELLED,
    R_EXPIRED: E_REMOTE_EXPIRED,
}

# ----------------------------
# Outcome kinds
# ----------------------------
K_PAID = "PAID"
K_CANCELLED = "CANCELLED"
K_EXPIRED = "EXPIRED"
K_PENDING = "PENDING"
K_UNCHANGED = "UNCHANGED"
K_REJECTED = "REJECTED"


@dataclass(frozen=True)
class Outcome:
    kind: str
    status: Optional[str] = None
    deliver: bool = False
    release: bool = False
    remote_cancel: bool = False


_STAY = Outcome(K_PENDING)
_SAME = Outcome(K_UNCHANGED)
_REJECT = Outcome(K_REJECTED)
_TO_PAID = Outcome(K_PAID, PAID, deliver=True)
_TO_CANCELLED = Outcome(K_CANCELLED, CANCELLED, release=True)


def decide(status: str, event: str) -> Outcome:
    if status == PENDING:
        if event in (E_REMOTE_SUCCESS, E_REMOTE_PROCESSING, E_APPROVE):
            return _TO_PAID
        if event == E_REMOTE_PENDING:
            return _STAY
        if event in (E_REMOTE_CANCELLED, E_REMOTE_EXPIRED):
            return _TO_CANCELLED
        if event == E_CANCEL:
            return Outcome(K_CANCELLED, CANCELLED, release=True,
                           remote_cancel=True)
        if event == E_LOCAL_EXPIRED:
            return Outcome(K_EXPIRED, EXPIRED, release=True,
                           remote_cancel=True)
        raise ValueError(f"unknown event: {event}")

    if status == PAID_UNFULFILLED:
        # paid, so it can only go forward
        if event == E_APPROVE:
            return _TO_PAID
        if event == E_CANCEL:
            return _REJECT
        return _SAME

    if status == PAID:
        return _REJECT if event == E_CANCEL else _SAME

    if status in (CANCELLED, EXPIRED, FAILED):
        return _REJECT if event == E_APPROVE else _SAME

    raise ValueError(f"unknown status: {status}")


class CheckoutService:
    """The four entry points the storefront may use to touch orders/stock."""

    def __init__(
        self,
        inventory: InventoryStore,
        orders: OrderStore,
        config: ConfigStore,
        gateway: DepositGateway,
        reservations: Optional[ReservationManager] = None,
        delivery: Optional[DeliveryEngine] = None,
        manual_ttl_seconds: int = MANUAL_ORDER_TTL_SECONDS,
    ) -> None:
        self.inventory = inventory
        self.orders = orders
        self.config = config
        self.gateway = gateway
        self.reservations = reservations or ReservationManager(inventory)
        self.delivery = delivery or DeliveryEngine(orders, inventory)
        self.manual_ttl_seconds = manual_ttl_seconds

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------
    async def create_order(
        self,
        product_id: int,
        quantity: int,
        buyer_email: str,
        method: str,
        buyer_contact: str = "",
        expected_price: Optional[int] = None,
    ) -> Order:
        if method not in (MANUAL, GATEWAY_AUTO):
            raise InvalidRequestError(f"unknown payment method: {method}")
        if quantity < 1:
            raise InvalidRequestError("quantity must be at least 1")
        email = clean_email(buyer_email)
        if email is None:
            raise InvalidRequestError(
                "buyer_email is required and must be a valid email address"
            )

        status = store_hours.evaluate(await self.config.all())
        if not status.open:
            raise StoreClosedError(status.reason)

        product = await self.inventory.get_product(product_id)
        if product is None:
            raise ProductNotFoundError()
        if expected_price is not None and expected_price != product.price:
            raise InvalidRequestError("price changed, reload the product")

        amount = product.price * quantity
        ref_code = new_ref_code()

        async with self.reservations.reservation(product_id, quantity) as res:
            deposit: Optional[Deposit] = None
            if method == GATEWAY_AUTO:
                quote = pricing.quote(amount)
                deposit = await self.gateway.create_deposit(
                    quote.nominal, ref_code
                )
                expires_at = deposit.expires_at
            else:
                quote = pricing.manual_quote(amount)
                expires_at = now_ts() + self.manual_ttl_seconds

            order = Order(
                id=new_order_id(),
                ref_code=ref_code,
                product_id=product.id,
                product_title=product.title,
                unit_price=product.price,
                quantity=quantity,
                amount=amount,
                fee=quote.fee,
                surcharge=quote.surcharge,
                nominal=quote.nominal,
                payment_method=method,
                gateway_id=deposit.gateway_id if deposit else None,
                qr_payload=deposit.qr_payload if deposit else None,
                gateway_fee=deposit.fee if deposit else 0,
                received=deposit.received if deposit else 0,
                buyer_email=email,
                buyer_contact=(buyer_contact or "").strip(),
                status=PENDING,
                reserved_unit_ids=res.unit_ids,
                delivered_content=None,
                expires_at=expires_at,
                created_at=now_ts(),
            )
            try:
                async with timeit("orders.insert"):
                    await self.orders.insert(order)
            except Exception as e:
                # whatever broke the write, the deposit must not stay payable
                log.exception("order insert failed", extra={
                    "ref_code": ref_code, "unit_ids": res.unit_ids,
                })
                if deposit is not None:
                    await self._remote_cancel(deposit.gateway_id)
                raise PersistenceError() from e
            res.keep()

        log.info("order created", extra={
            "order_id": order.id, "ref_code": ref_code,
            "method": method, "unit_ids": order.reserved_unit_ids,
        })
        return order

    # ------------------------------------------------------------------
    # refresh / approve / cancel
    # ------------------------------------------------------------------
    async def refresh_status(self, order_id: str) -> Order:
        order = await self._get(order_id)
        if order.status != PENDING:
            return order

        if order.payment_method == MANUAL or not order.gateway_id:
            if order.expires_at is not None and now_ts() >= order.expires_at:
                return await self._apply(order, E_LOCAL_EXPIRED)
            return order

        try:
            remote = await self.gateway.query_status(order.gateway_id)
        except (GatewayUnavailableError, GatewayRejectedError) as e:
            log.warning("status refresh deferred", extra={
                "order_id": order.id, "reason": str(e),
            })
            return order
        event = REMOTE_EVENTS[remote.status]
        if event in (E_REMOTE_SUCCESS, E_REMOTE_PROCESSING) and remote.received:
            # what the gateway finally charged and credits for this deposit
            await self.orders.record_settlement(
                order.id, remote.fee, remote.received
            )
        return await self._apply(order, event)

    async def approve(self, order_id: str) -> bool:
        order = await self._get(order_id)
        if order.status == PAID:
            return True
        order = await self._apply(order, E_APPROVE)
        if order.status == PAID_UNFULFILLED:
            raise DeliveryError()
        if order.status != PAID:
            raise InvalidTransitionError(order.id, order.status, E_APPROVE)
        return True

    async def cancel(self, order_id: str) -> bool:
        order = await self._get(order_id)
        if order.status in (CANCELLED, EXPIRED, FAILED):
            return True
        await self._apply(order, E_CANCEL)
        return True

    async def list_orders(self, limit: int = 200) -> List[Order]:
        return await self.orders.list_recent(limit)

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    async def _get(self, order_id: str) -> Order:
        order = await self.orders.get(order_id)
        if order is None:
            raise OrderNotFoundError()
        return order

    async def _remote_cancel(self, gateway_id: str) -> None:
        try:
            await self.gateway.cancel_deposit(gateway_id)
        except Exception:
            # local state is authoritative; the remote one is advisory
            log.exception("remote cancel failed",
                          extra={"gateway_id": gateway_id})

    async def _apply(self, order: Order, event: str) -> Order:
        outcome = decide(order.status, event)
        if outcome.kind == K_REJECTED:
            raise InvalidTransitionError(order.id, order.status, event)
        if outcome.kind in (K_PENDING, K_UNCHANGED):
            return order

        if outcome.deliver:
            try:
                await self.delivery.deliver(order)
            except DeliveryError:
                pass  # order is now PAID_UNFULFILLED, logged by the engine
            return await self._get(order.id)

        if outcome.remote_cancel and order.gateway_id:
            await self._remote_cancel(order.gateway_id)

        won = await self.orders.transition(order.id, (PENDING,), outcome.status)
        if won:
            log.info("order closed", extra={
                "order_id": order.id, "status": outcome.status,
                "event": event,
            })
            if outcome.release:
                await self.reservations.release(order.reserved_unit_ids)
            return await self._get(order.id)

        # lost to a concurrent transition: judge the event again
        return await self._apply(await self._get(order.id), event)
