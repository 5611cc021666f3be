# model/inventory.py
"""
Inventory store: products and their sellable units.

A unit is either free (claimed = false) or claimed by exactly one order.
Claims are a single conditional UPDATE so that two racing claims on the same
unit can never both succeed:

    UPDATE inventory_units SET claimed = true
    WHERE id IN (...) AND claimed = false
    RETURNING id

If fewer rows come back than were asked for, the transaction is rolled back
and nothing stays claimed.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Sequence

from sqlalchemy import text, bindparam, select

from ..helpers import now_ts
from ..infra.sql import Database
from ..infra.timings import timeit
from .db import Product

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Unit:
    id: int
    product_id: int
    content: str
    claimed: bool


class _ClaimConflict(Exception):
    # raised inside the claim transaction to force a rollback
    pass


def _unit(row) -> Unit:
    return Unit(
        id=int(row["id"]),
        product_id=int(row["product_id"]),
        content=row["content"],
        claimed=bool(row["claimed"]),
    )


class InventoryStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # reservation contract
    # ------------------------------------------------------------------
    async def list_free_units(self, product_id: int, limit: int) -> List[Unit]:
        async with self.db.transaction() as s:
            rows = (await s.execute(text("""
                SELECT id, product_id, content, claimed FROM inventory_units
                WHERE product_id = :pid AND claimed = :no
                ORDER BY id
                LIMIT :lim
            """), {"pid": product_id, "no": False, "lim": int(limit)})
            ).mappings().all()
        return [_unit(r) for r in rows]

    async def claim(self, unit_ids: Sequence[int]) -> bool:
        ids = sorted({int(i) for i in unit_ids})
        if not ids:
            return False
        stmt = text("""
            UPDATE inventory_units SET claimed = :yes
            WHERE id IN :ids AND claimed = :no
            RETURNING id
        """).bindparams(bindparam("ids", expanding=True))
        try:
            async with timeit("inventory.claim"):
                async with self.db.transaction() as s:
                    got = (await s.execute(
                        stmt, {"ids": ids, "yes": True, "no": False}
                    )).all()
                    if len(got) != len(ids):
                        raise _ClaimConflict()
        except _ClaimConflict:
            log.info("claim conflict", extra={"unit_ids": ids})
            return False
        return True

    async def release(self, unit_ids: Sequence[int]) -> None:
        ids = sorted({int(i) for i in unit_ids})
        if not ids:
            return
        stmt = text("""
            UPDATE inventory_units SET claimed = :no WHERE id IN :ids
        """).bindparams(bindparam("ids", expanding=True))
        async with self.db.transaction() as s:
            await s.execute(stmt, {"ids": ids, "no": False})

    async def count_free(self, product_id: int) -> int:
        async with self.db.transaction() as s:
            n = (await s.execute(text("""
                SELECT COUNT(*) FROM inventory_units
                WHERE product_id = :pid AND claimed = :no
            """), {"pid": product_id, "no": False})).scalar_one()
        return int(n)

    async def get_units(self, unit_ids: Sequence[int]) -> Dict[int, Unit]:
        ids = [int(i) for i in unit_ids]
        if not ids:
            return {}
        stmt = text("""
            SELECT id, product_id, content, claimed FROM inventory_units
            WHERE id IN :ids
        """).bindparams(bindparam("ids", expanding=True))
        async with self.db.transaction() as s:
            rows = (await s.execute(stmt, {"ids": ids})).mappings().all()
        return {int(r["id"]): _unit(r) for r in rows}

    # ------------------------------------------------------------------
    # admin
    # ------------------------------------------------------------------
    async def add_units(self, product_id: int, contents: Sequence[str]) -> int:
        rows = [
            {"pid": product_id, "content": c, "no": False, "now": now_ts()}
            for c in (c.strip() for c in contents) if c
        ]
        if not rows:
            return 0
        async with self.db.transaction() as s:
            await s.execute(text("""
                INSERT INTO inventory_units(product_id, content, claimed,
                                            created_at)
                VALUES (:pid, :content, :no, :now)
            """), rows)
        return len(rows)

    async def list_units(
        self, product_id: int, status: str = "all"
    ) -> List[Unit]:
        where = "product_id = :pid"
        params: Dict[str, Any] = {"pid": product_id}
        if status == "available":
            where += " AND claimed = :claimed"
            params["claimed"] = False
        elif status == "sold":
            where += " AND claimed = :claimed"
            params["claimed"] = True
        elif status != "all":
            raise ValueError(f"unknown unit filter: {status}")
        async with self.db.transaction() as s:
            rows = (await s.execute(text(
                "SELECT id, product_id, content, claimed FROM inventory_units "
                f"WHERE {where} ORDER BY id DESC"
            ), params)).mappings().all()
        return [_unit(r) for r in rows]

    async def update_unit(self, unit_id: int, content: str) -> bool:
        async with self.db.transaction() as s:
            row = (await s.execute(text("""
                UPDATE inventory_units SET content = :content
                WHERE id = :id AND claimed = :no
                RETURNING id
            """), {"id": unit_id, "content": content, "no": False})).first()
        return row is not None

    async def delete_unit(self, unit_id: int) -> bool:
        # claimed units belong to an order; only free ones can go
        async with self.db.transaction() as s:
            row = (await s.execute(text("""
                DELETE FROM inventory_units
                WHERE id = :id AND claimed = :no
                RETURNING id
            """), {"id": unit_id, "no": False})).first()
        return row is not None

    # ------------------------------------------------------------------
    # products
    # ------------------------------------------------------------------
    async def create_product(self, title: str, price: int) -> Product:
        product = Product(title=title, price=int(price), sold=0,
                          created_at=now_ts())
        async with self.db.transaction() as s:
            s.add(product)
        return product

    async def get_product(self, product_id: int) -> Optional[Product]:
        async with self.db.transaction() as s:
            return await s.get(Product, product_id)

    async def list_products(self) -> List[Product]:
        async with self.db.transaction() as s:
            return list(
                (await s.execute(select(Product).order_by(Product.id)))
                .scalars().all()
            )
