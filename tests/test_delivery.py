"""
Delivery engine tests: exactly-once content binding.
"""
import pytest

from stockfront.checkout import DeliveryEngine
from stockfront.model.db import GATEWAY_AUTO, PAID

BUYER = "buyer@example.com"


class TestDelivery:
    @pytest.mark.asyncio
    async def test_deliver_once(self, service, inventory, orders, product) -> None:
        order = await service.create_order(product.id, 3, BUYER, GATEWAY_AUTO)
        engine = DeliveryEngine(orders, inventory)

        first = await engine.deliver(order)
        # stale object: still thinks nothing was delivered
        second = await engine.deliver(order)

        assert first.delivered and not second.delivered
        assert first.content == second.content == "code-1\ncode-2\ncode-3"

        stored = await orders.get(order.id)
        assert stored.status == PAID
        assert stored.paid_at is not None
        assert (await inventory.get_product(product.id)).sold == 3

    @pytest.mark.asyncio
    async def test_already_delivered_short_circuits(
        self, service, inventory, orders, product
    ) -> None:
        order = await service.create_order(product.id, 1, BUYER, GATEWAY_AUTO)
        engine = DeliveryEngine(orders, inventory)
        await engine.deliver(order)

        fresh = await orders.get(order.id)
        result = await engine.deliver(fresh)
        assert not result.delivered
        assert result.content == "code-1"

    @pytest.mark.asyncio
    async def test_cancelled_order_is_not_delivered(
        self, service, inventory, orders, product
    ) -> None:
        order = await service.create_order(product.id, 1, BUYER, GATEWAY_AUTO)
        await service.cancel(order.id)

        result = await DeliveryEngine(orders, inventory).deliver(order)
        assert not result.delivered
        assert result.content is None
        assert (await inventory.get_product(product.id)).sold == 0
