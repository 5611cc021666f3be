from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    Text,
    JSON,
    ForeignKey,
    Index,
)


Base = declarative_base()

# Order statuses
PENDING = "PENDING"
PAID = "PAID"
PAID_UNFULFILLED = "PAID_UNFULFILLED"
CANCELLED = "CANCELLED"
FAILED = "FAILED"
EXPIRED = "EXPIRED"

TERMINAL = frozenset({PAID, CANCELLED, FAILED, EXPIRED})

# Payment methods
MANUAL = "MANUAL"
GATEWAY_AUTO = "GATEWAY_AUTO"


# ----------------------------
# ORM models
# ----------------------------
class Product(Base):
    __tablename__ = "products"
    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    price = Column(Integer, nullable=False)  # rupiah
    sold = Column(Integer, nullable=False, default=0)
    created_at = Column(Float, nullable=False)


class InventoryUnit(Base):
    __tablename__ = "inventory_units"
    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )
    content = Column(Text, nullable=False)
    claimed = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False)

    __table_args__ = (
        Index("inventory_units_product_claimed_idx", "product_id", "claimed"),
    )


class Order(Base):
    __tablename__ = "orders"
    id = Column(String, primary_key=True)
    ref_code = Column(String, nullable=False, unique=True)

    # snapshot of the catalog at purchase time
    product_id = Column(Integer, nullable=False)
    product_title = Column(String, nullable=False)
    unit_price = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)
    amount = Column(Integer, nullable=False)

    fee = Column(Integer, nullable=False, default=0)
    surcharge = Column(Integer, nullable=False, default=0)
    nominal = Column(Integer, nullable=False, default=0)

    # MANUAL | GATEWAY_AUTO
    payment_method = Column(String, nullable=False)
    gateway_id = Column(String, nullable=True, unique=True)
    qr_payload = Column(Text, nullable=True)
    # reported by the gateway: its cut, and what the merchant is credited
    gateway_fee = Column(Integer, nullable=False, default=0)
    received = Column(Integer, nullable=False, default=0)

    buyer_email = Column(String, nullable=False)
    buyer_contact = Column(String, nullable=False, default="")

    # PENDING | PAID | PAID_UNFULFILLED | CANCELLED | FAILED | EXPIRED
    status = Column(String, nullable=False, default=PENDING)
    reserved_unit_ids = Column(JSON, nullable=False, default=list)
    delivered_content = Column(Text, nullable=True)

    expires_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)
    paid_at = Column(Float, nullable=True)
    closed_at = Column(Float, nullable=True)

    __table_args__ = (
        Index("orders_created_at_idx", "created_at"),
    )


class ConfigEntry(Base):
    __tablename__ = "store_config"
    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)


async def create_schema(conn) -> None:
    await conn.run_sync(Base.metadata.create_all)
