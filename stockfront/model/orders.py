# model/orders.py
from __future__ import annotations
from typing import Iterable, List, Optional

from sqlalchemy import text, bindparam, select

from ..helpers import now_ts
from ..infra.sql import Database
from .db import Order, PAID, PENDING, PAID_UNFULFILLED


class OrderStore:
    """Orders are only ever inserted and conditionally updated.

    Every status change is `UPDATE ... WHERE status IN (expected)`, so the
    caller that gets a row back is the single winner of that transition.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def insert(self, order: Order) -> Order:
        async with self.db.transaction() as s:
            s.add(order)
        return order

    async def get(self, order_id: str) -> Optional[Order]:
        async with self.db.transaction() as s:
            return await s.get(Order, order_id)

    async def list_recent(self, limit: int = 200) -> List[Order]:
        async with self.db.transaction() as s:
            rows = await s.execute(
                select(Order)
                .order_by(Order.created_at.desc())
                .limit(max(1, min(limit, 500)))
            )
            return list(rows.scalars().all())

    async def transition(
        self, order_id: str, expected: Iterable[str], new_status: str
    ) -> bool:
        """Move `order_id` to `new_status` iff its status is in `expected`."""
        stmt = text("""
            UPDATE orders SET status = :new, closed_at = :now
            WHERE id = :id AND status IN :expected
            RETURNING id
        """).bindparams(bindparam("expected", expanding=True))
        async with self.db.transaction() as s:
            row = (await s.execute(stmt, {
                "id": order_id,
                "new": new_status,
                "now": now_ts(),
                "expected": list(expected),
            })).first()
        return row is not None

    async def record_settlement(
        self, order_id: str, gateway_fee: int, received: int
    ) -> bool:
        async with self.db.transaction() as s:
            row = (await s.execute(text("""
                UPDATE orders SET gateway_fee = :fee, received = :received
                WHERE id = :id AND status IN (:pending, :unfulfilled)
                RETURNING id
            """), {
                "id": order_id,
                "fee": int(gateway_fee),
                "received": int(received),
                "pending": PENDING,
                "unfulfilled": PAID_UNFULFILLED,
            })).first()
        return row is not None

    async def bind_delivery(
        self, order_id: str, content: str, product_id: int, quantity: int
    ) -> bool:
        """Write content once and bump the product's sold counter.

        Both statements share one transaction; the counter only moves when
        the guarded write actually hit the row.
        """
        async with self.db.transaction() as s:
            row = (await s.execute(text("""
                UPDATE orders
                SET delivered_content = :content, status = :paid,
                    paid_at = :now
                WHERE id = :id
                  AND delivered_content IS NULL
                  AND status IN (:pending, :unfulfilled)
                RETURNING id
            """), {
                "id": order_id,
                "content": content,
                "paid": PAID,
                "pending": PENDING,
                "unfulfilled": PAID_UNFULFILLED,
                "now": now_ts(),
            })).first()
            if row is None:
                return False
            await s.execute(text("""
                UPDATE products SET sold = sold + :qty WHERE id = :pid
            """), {"qty": int(quantity), "pid": product_id})
        return True
