from __future__ import annotations
import asyncio
import logging
import os
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Sequence

from ..errors import InsufficientStockError
from ..infra.timings import timeit
from ..model.inventory import InventoryStore, Unit

log = logging.getLogger(__name__)

# For stores whose conditional UPDATE cannot be trusted: serialize claims
# per product inside this process.
SERIALIZE_CLAIMS = os.getenv("SERIALIZE_CLAIMS", "0") == "1"


class Reservation:
    """Units held for one checkout attempt."""

    def __init__(self, product_id: int, units: List[Unit]) -> None:
        self.product_id = product_id
        self.units = units
        self.kept = False

    @property
    def unit_ids(self) -> List[int]:
        return [u.id for u in self.units]

    def keep(self) -> None:
        # the order now owns the units
        self.kept = True


class ReservationManager:
    def __init__(self, inventory: InventoryStore,
                 serialize_claims: bool = SERIALIZE_CLAIMS) -> None:
        self.inventory = inventory
        self.serialize_claims = serialize_claims
        self._locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def reserve(self, product_id: int, quantity: int) -> List[Unit]:
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        async with timeit("reservation.reserve"):
            if self.serialize_claims:
                async with self._locks[product_id]:
                    return await self._reserve(product_id, quantity)
            return await self._reserve(product_id, quantity)

    async def _reserve(self, product_id: int, quantity: int) -> List[Unit]:
        units = await self.inventory.list_free_units(product_id, quantity)
        if len(units) < quantity:
            raise InsufficientStockError(product_id, quantity, len(units))
        # a lost race shows up as a conflict: the whole attempt fails
        if not await self.inventory.claim([u.id for u in units]):
            raise InsufficientStockError(product_id, quantity)
        log.info("units reserved", extra={
            "product_id": product_id, "unit_ids": [u.id for u in units],
        })
        return units

    async def release(self, unit_ids: Sequence[int]) -> bool:
        """Best-effort: a failed release is logged, never raised."""
        if not unit_ids:
            return True
        try:
            await self.inventory.release(unit_ids)
        except Exception:
            log.exception("unit release failed",
                          extra={"unit_ids": list(unit_ids)})
            return False
        log.info("units released", extra={"unit_ids": list(unit_ids)})
        return True

    @asynccontextmanager
    async def reservation(
        self, product_id: int, quantity: int
    ) -> AsyncIterator[Reservation]:
        """Reserve on entry; release on exit unless `keep()` was called."""
        res = Reservation(product_id, await self.reserve(product_id, quantity))
        try:
            yield res
        except BaseException:
            if not res.kept:
                await self.release(res.unit_ids)
            raise
        if not res.kept:
            await self.release(res.unit_ids)
