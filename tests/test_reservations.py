"""
Reservation tests, including concurrent claims on the same product.
"""
import asyncio

import pytest

from stockfront.checkout import ReservationManager
from stockfront.errors import InsufficientStockError


class TestReservations:
    @pytest.mark.asyncio
    async def test_reserve_and_release(self, inventory, product) -> None:
        mgr = ReservationManager(inventory)
        units = await mgr.reserve(product.id, 2)
        assert len(units) == 2
        assert await inventory.count_free(product.id) == 3

        assert await mgr.release([u.id for u in units])
        assert await inventory.count_free(product.id) == 5

    @pytest.mark.asyncio
    async def test_insufficient_stock(self, inventory, product) -> None:
        mgr = ReservationManager(inventory)
        with pytest.raises(InsufficientStockError) as exc:
            await mgr.reserve(product.id, 6)
        assert exc.value.available == 5
        assert await inventory.count_free(product.id) == 5

    @pytest.mark.asyncio
    async def test_context_releases_unless_kept(self, inventory, product) -> None:
        mgr = ReservationManager(inventory)

        with pytest.raises(RuntimeError):
            async with mgr.reservation(product.id, 2):
                raise RuntimeError("boom")
        assert await inventory.count_free(product.id) == 5

        async with mgr.reservation(product.id, 2):
            pass
        assert await inventory.count_free(product.id) == 5

        async with mgr.reservation(product.id, 2) as res:
            res.keep()
        assert await inventory.count_free(product.id) == 3

    @pytest.mark.race
    @pytest.mark.asyncio
    @pytest.mark.parametrize("serialize", [False, True])
    async def test_concurrent_reservations_never_oversell(
        self, inventory, product, serialize: bool
    ) -> None:
        """
        Ten buyers race for five units. No unit may end up in two
        reservations and the free count must match what was handed out.
        """
        mgr = ReservationManager(inventory, serialize_claims=serialize)
        results = await asyncio.gather(
            *(mgr.reserve(product.id, 1) for _ in range(10)),
            return_exceptions=True,
        )

        won = [r for r in results if isinstance(r, list)]
        lost = [r for r in results if isinstance(r, InsufficientStockError)]
        assert len(won) + len(lost) == 10
        assert 1 <= len(won) <= 5

        ids = [u.id for units in won for u in units]
        assert len(ids) == len(set(ids))
        assert await inventory.count_free(product.id) == 5 - len(ids)
