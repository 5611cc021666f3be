# model/config.py
from __future__ import annotations
from typing import Dict, Optional

from sqlalchemy import text

from ..infra.sql import Database

GATEWAY_API_KEY = "gateway_api_key"
STORE_MODE = "store_mode"
STORE_OPEN_TIME = "store_open_time"
STORE_CLOSE_TIME = "store_close_time"
STORE_DAYS = "store_days"
STORE_HOURS_ENABLED = "store_hours_enabled"

DEFAULTS: Dict[str, str] = {
    STORE_MODE: "open",
    STORE_OPEN_TIME: "09:00",
    STORE_CLOSE_TIME: "21:00",
    STORE_DAYS: "1,2,3,4,5,6,7",
    STORE_HOURS_ENABLED: "false",
}

# never echoed back by the admin config listing
SECRET_KEYS = frozenset({GATEWAY_API_KEY})


class ConfigStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def get(self, key: str) -> Optional[str]:
        async with self.db.transaction() as s:
            row = (await s.execute(
                text("SELECT value FROM store_config WHERE key = :k"),
                {"k": key},
            )).first()
        if row is None:
            return DEFAULTS.get(key)
        return row[0]

    async def all(self) -> Dict[str, str]:
        out = dict(DEFAULTS)
        async with self.db.transaction() as s:
            rows = (await s.execute(
                text("SELECT key, value FROM store_config")
            )).all()
        out.update({k: v for k, v in rows})
        return out

    async def set(self, key: str, value: str) -> None:
        await self.set_many({key: value})

    async def set_many(self, values: Dict[str, str]) -> None:
        """Upsert all of `values` in one transaction."""
        if not values:
            return
        async with self.db.transaction() as s:
            await s.execute(text("""
                INSERT INTO store_config(key, value) VALUES (:k, :v)
                ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value
            """), [{"k": k, "v": v} for k, v in values.items()])
