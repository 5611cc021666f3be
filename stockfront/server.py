from __future__ import annotations
import logging
import os
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import ORJSONResponse

from .checkout import CheckoutService
from .checkout import store_hours
from .errors import CheckoutError, InvalidRequestError
from .gateway import HttpDepositGateway, GATEWAY_BASE_URL
from .helpers import ct_equal, to_iso
from .infra import timings
from .infra.logs import setup_logging
from .infra.sql import make_async_engine
from .infra.timings import timeit
from .model import config as cfg
from .model.config import ConfigStore
from .model.db import Order, PAID, create_schema
from .model.inventory import InventoryStore
from .model.orders import OrderStore
from . import mockgateway

log = logging.getLogger(__name__)

# ----------------------------
# Config & Constants
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./stockfront.db")
GATEWAY_API_KEY = os.environ.get("GATEWAY_API_KEY", "")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "supasecret")
MOUNT_MOCK_GATEWAY = os.environ.get("MOUNT_MOCK_GATEWAY", "1") == "1"

CONFIG_KEYS = frozenset(cfg.DEFAULTS) | cfg.SECRET_KEYS


# ----------------------------
# Helpers
# ----------------------------
def require_admin(
    x_admin_password: Optional[str] = Header(None),
) -> None:
    if not ct_equal(x_admin_password, ADMIN_PASSWORD):
        raise HTTPException(status_code=401, detail="admin password required")


def _order_json(order: Order, admin: bool = False) -> dict:
    out = {
        "order_id": order.id,
        "ref_code": order.ref_code,
        "status": order.status,
        "product_id": order.product_id,
        "product_title": order.product_title,
        "unit_price": order.unit_price,
        "quantity": order.quantity,
        "amount": order.amount,
        "fee": order.fee,
        "surcharge": order.surcharge,
        "nominal": order.nominal,
        "payment_method": order.payment_method,
        "qr_payload": order.qr_payload or "",
        "expires_at": to_iso(order.expires_at),
        "created_at": to_iso(order.created_at),
        "paid_at": to_iso(order.paid_at),
        # content only leaves the building once paid
        "delivered_content": (
            order.delivered_content if order.status == PAID else None
        ),
    }
    if admin:
        out.update({
            "gateway_id": order.gateway_id or "",
            "gateway_fee": order.gateway_fee,
            "received": order.received,
            "buyer_email": order.buyer_email,
            "buyer_contact": order.buyer_contact,
            "reserved_unit_ids": list(order.reserved_unit_ids or []),
            "closed_at": to_iso(order.closed_at),
        })
    return out


def _int_field(payload: dict, key: str, default: Optional[int] = None) -> int:
    raw = payload.get(key, default)
    if raw is None:
        raise InvalidRequestError(f"{key} is required")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise InvalidRequestError(f"{key} must be an integer")


def create_app(
    database_url: str = DATABASE_URL,
    http: Optional[httpx.AsyncClient] = None,
    gateway_base_url: str = GATEWAY_BASE_URL,
    mount_mock_gateway: bool = MOUNT_MOCK_GATEWAY,
) -> FastAPI:
    engine, db = make_async_engine(database_url)

    app = FastAPI(
        title="stockfront",
        default_response_class=ORJSONResponse,
    )
    if mount_mock_gateway:
        app.mount("/mockgateway", mockgateway.app)

    inventory = InventoryStore(db)
    config = ConfigStore(db)

    async def api_key() -> Optional[str]:
        return await config.get(cfg.GATEWAY_API_KEY) or GATEWAY_API_KEY or None

    # ---
    # startup / shutdown
    # ---
    @app.on_event("startup")
    async def _say_hello():
        setup_logging()
        log.info("stockfront is starting up", extra={
            "database": engine.url.get_backend_name(),
            "gateway": gateway_base_url,
            "mock_gateway": mount_mock_gateway,
        })

    @app.on_event("startup")
    async def _db_init():
        async with engine.begin() as conn:
            await create_schema(conn)

    @app.on_event("startup")
    async def _checkout_start():
        client = http
        if client is None:
            client = httpx.AsyncClient(
                timeout=10.0,
                limits=httpx.Limits(
                    max_connections=100, max_keepalive_connections=100
                ),
            )
        app.state.http = client
        gateway = HttpDepositGateway(client, api_key, base_url=gateway_base_url)
        app.state.checkout = CheckoutService(
            inventory=inventory,
            orders=OrderStore(db),
            config=config,
            gateway=gateway,
        )

    @app.on_event("shutdown")
    async def _http_client_stop():
        client = getattr(app.state, "http", None)
        if client is not None and http is None:
            await client.aclose()
        app.state.http = None

    @app.on_event("shutdown")
    async def _db_stop():
        await engine.dispose()

    @app.exception_handler(CheckoutError)
    async def _checkout_error(request: Request, e: CheckoutError):
        return ORJSONResponse(
            status_code=e.status_code,
            content={"ok": False, "error": e.code, "message": e.message},
        )

    def checkout() -> CheckoutService:
        svc = getattr(app.state, "checkout", None)
        if svc is None:
            raise RuntimeError("checkout service not initialized")
        return svc

    # ----------------------------
    # Storefront
    # ----------------------------
    @app.get("/api/store/status")
    async def get_store_status():
        st = store_hours.evaluate(await config.all())
        return {"open": st.open, "mode": st.mode, "reason": st.reason}

    @app.get("/api/products")
    async def list_products():
        items = []
        for p in await inventory.list_products():
            items.append({
                "id": p.id,
                "title": p.title,
                "price": p.price,
                "sold": p.sold,
                "available": await inventory.count_free(p.id),
            })
        return {"items": items}

    @app.get("/api/products/{product_id}/stock")
    async def get_stock(product_id: int):
        return {
            "product_id": product_id,
            "available": await inventory.count_free(product_id),
        }

    @app.post("/api/checkout")
    async def create_checkout(
        payload: dict,
        svc: CheckoutService = Depends(checkout),
    ):
        product_id = _int_field(payload, "product_id")
        quantity = _int_field(payload, "quantity", 1)
        price = payload.get("price")
        async with timeit("checkout.create"):
            order = await svc.create_order(
                product_id=product_id,
                quantity=quantity,
                buyer_email=(payload.get("buyer_email") or "").strip(),
                method=(payload.get("method") or "").strip().upper(),
                buyer_contact=(payload.get("buyer_contact") or ""),
                expected_price=(
                    None if price is None else _int_field(payload, "price")
                ),
            )
        return {"ok": True, "order": _order_json(order)}

    # ----------------------------
    # API: Order status (polled by the payment page)
    # ----------------------------
    @app.get("/api/orders/{order_id}")
    async def get_order(order_id: str,
                        svc: CheckoutService = Depends(checkout)):
        async with timeit("checkout.refresh"):
            order = await svc.refresh_status(order_id)
        return {"ok": True, "order": _order_json(order)}

    @app.post("/api/orders/{order_id}/cancel")
    async def cancel_order(order_id: str,
                           svc: CheckoutService = Depends(checkout)):
        return {"ok": await svc.cancel(order_id)}

    # ----------------------------
    # Admin
    # ----------------------------
    @app.post("/api/admin/orders/{order_id}/approve",
              dependencies=[Depends(require_admin)])
    async def admin_approve(order_id: str,
                            svc: CheckoutService = Depends(checkout)):
        return {"ok": await svc.approve(order_id)}

    @app.post("/api/admin/orders/{order_id}/cancel",
              dependencies=[Depends(require_admin)])
    async def admin_cancel(order_id: str,
                           svc: CheckoutService = Depends(checkout)):
        return {"ok": await svc.cancel(order_id)}

    @app.get("/api/admin/orders", dependencies=[Depends(require_admin)])
    async def admin_orders(limit: int = 200,
                           svc: CheckoutService = Depends(checkout)):
        orders = await svc.list_orders(limit)
        return {
            "items": [_order_json(o, admin=True) for o in orders],
            "limit": limit,
        }

    @app.post("/api/admin/products", dependencies=[Depends(require_admin)])
    async def admin_create_product(payload: dict):
        title = (payload.get("title") or "").strip()
        price = _int_field(payload, "price")
        if not title or price <= 0:
            raise InvalidRequestError("title and a positive price are required")
        p = await inventory.create_product(title, price)
        return {"id": p.id, "title": p.title, "price": p.price}

    @app.post("/api/admin/products/{product_id}/units",
              dependencies=[Depends(require_admin)])
    async def admin_add_units(product_id: int, payload: dict):
        if await inventory.get_product(product_id) is None:
            raise HTTPException(404, detail="product not found")
        contents = payload.get("contents")
        if isinstance(contents, str):
            # bulk paste: one unit per line
            contents = contents.splitlines()
        if not isinstance(contents, list):
            raise InvalidRequestError("contents must be a list or text")
        added = await inventory.add_units(product_id, [str(c) for c in contents])
        return {"added": added,
                "available": await inventory.count_free(product_id)}

    @app.get("/api/admin/products/{product_id}/units",
             dependencies=[Depends(require_admin)])
    async def admin_list_units(product_id: int, status: str = "all"):
        if status not in ("all", "available", "sold"):
            raise InvalidRequestError("status must be all, available or sold")
        units = await inventory.list_units(product_id, status)
        return {"items": [
            {"id": u.id, "content": u.content, "claimed": u.claimed}
            for u in units
        ]}

    @app.patch("/api/admin/units/{unit_id}",
               dependencies=[Depends(require_admin)])
    async def admin_update_unit(unit_id: int, payload: dict):
        content = (payload.get("content") or "").strip()
        if not content:
            raise InvalidRequestError("content is required")
        if not await inventory.update_unit(unit_id, content):
            raise HTTPException(409, detail="unit missing or already claimed")
        return {"ok": True}

    @app.delete("/api/admin/units/{unit_id}",
                dependencies=[Depends(require_admin)])
    async def admin_delete_unit(unit_id: int):
        if not await inventory.delete_unit(unit_id):
            raise HTTPException(409, detail="unit missing or already claimed")
        return {"ok": True}

    @app.get("/api/admin/config", dependencies=[Depends(require_admin)])
    async def admin_get_config():
        values = await config.all()
        return {k: ("***" if k in cfg.SECRET_KEYS else v)
                for k, v in values.items()}

    @app.put("/api/admin/config", dependencies=[Depends(require_admin)])
    async def admin_put_config(payload: dict):
        unknown = set(payload) - CONFIG_KEYS
        if unknown:
            raise InvalidRequestError(f"unknown config keys: {sorted(unknown)}")
        values = {}
        for key, value in payload.items():
            value = str(value).strip()
            if key == cfg.STORE_MODE and value not in store_hours.MODES:
                raise InvalidRequestError(f"store_mode must be one of {store_hours.MODES}")
            if key in (cfg.STORE_OPEN_TIME, cfg.STORE_CLOSE_TIME):
                try:
                    value = store_hours._hhmm(value)
                except ValueError:
                    raise InvalidRequestError(f"{key} must be HH:MM")
            values[key] = value
        # nothing is written unless every key passed
        await config.set_many(values)
        return {"ok": True}

    @app.post("/api/admin/gateway/test", dependencies=[Depends(require_admin)])
    async def admin_gateway_test(payload: dict,
                                 svc: CheckoutService = Depends(checkout)):
        ok = await svc.gateway.check_connection(payload.get("api_key") or None)
        return {"ok": ok}

    @app.get("/api/admin/timings", dependencies=[Depends(require_admin)])
    async def admin_timings():
        return timings.snapshot()

    return app


app = create_app()
