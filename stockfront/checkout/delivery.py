from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from ..errors import DeliveryError
from ..infra.timings import timeit
from ..model.db import Order, PAID_UNFULFILLED, PENDING
from ..model.inventory import InventoryStore
from ..model.orders import OrderStore

log = logging.getLogger(__name__)

SEPARATOR = "\n"


@dataclass(frozen=True)
class DeliveryResult:
    delivered: bool  # False when someone else already delivered
    content: Optional[str]


class DeliveryEngine:
    """Binds reserved unit contents to a paid order, exactly once.

    The guarded write in `OrderStore.bind_delivery` is the idempotence
    boundary: a second call (poll race, retry, double approve) finds
    `delivered_content` already set and neither rewrites it nor bumps the
    sold counter again.
    """

    def __init__(self, orders: OrderStore, inventory: InventoryStore) -> None:
        self.orders = orders
        self.inventory = inventory

    async def deliver(self, order: Order) -> DeliveryResult:
        if order.delivered_content is not None:
            return DeliveryResult(False, order.delivered_content)

        unit_ids = list(order.reserved_unit_ids or [])
        units = await self.inventory.get_units(unit_ids)
        missing = [i for i in unit_ids if i not in units]
        if not unit_ids or missing:
            await self.orders.transition(
                order.id, (PENDING,), PAID_UNFULFILLED
            )
            log.error("delivery failed: reserved units missing", extra={
                "order_id": order.id, "missing": missing,
            })
            raise DeliveryError(
                f"order {order.id}: reserved units missing: {missing}"
            )

        content = SEPARATOR.join(units[i].content for i in unit_ids)
        async with timeit("delivery.bind"):
            won = await self.orders.bind_delivery(
                order.id, content, order.product_id, order.quantity
            )
        if not won:
            current = await self.orders.get(order.id)
            return DeliveryResult(
                False, current.delivered_content if current else None
            )
        log.info("order delivered", extra={
            "order_id": order.id, "unit_ids": unit_ids,
        })
        return DeliveryResult(True, content)
