"""Gateway fee and disambiguation surcharge.

The gateway keeps a flat fee F plus a percentage r of every deposit. To make
sure the merchant still receives at least the buyer-facing price P:

    A = ceil((P + F) / (1 - r))     base amount
    U = uniform integer in [lo, hi] surcharge, fresh per order
    N = A + U                        nominal requested from the gateway
    fee = A - P                      shown to the buyer

The surcharge keeps concurrent deposits of the same price distinguishable on
the gateway side.
"""
from __future__ import annotations
import os
import random
from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR
from typing import Optional, Tuple

FLAT_FEE = int(os.getenv("GATEWAY_FLAT_FEE", "200"))
FEE_RATE = Decimal(os.getenv("GATEWAY_FEE_RATE", "0.007"))
SURCHARGE_RANGE = (
    int(os.getenv("SURCHARGE_MIN", "1")),
    int(os.getenv("SURCHARGE_MAX", "150")),
)


@dataclass(frozen=True)
class PricingQuote:
    price: int
    base: int
    fee: int
    surcharge: int
    nominal: int


def base_amount(price: int, flat_fee: int = FLAT_FEE,
                rate: Decimal = FEE_RATE) -> int:
    rate = Decimal(rate)
    if not (0 <= rate < 1):
        raise ValueError("fee rate must be in [0, 1)")
    need = Decimal(price + flat_fee) / (1 - rate)
    return int(need.to_integral_value(rounding=ROUND_CEILING))


def merchant_net(nominal: int, flat_fee: int = FLAT_FEE,
                 rate: Decimal = FEE_RATE) -> int:
    """What the gateway credits the merchant for a deposit of `nominal`."""
    kept = Decimal(nominal) * (1 - Decimal(rate))
    return int(kept.to_integral_value(rounding=ROUND_FLOOR)) - flat_fee


def quote(
    price: int,
    flat_fee: int = FLAT_FEE,
    rate: Decimal = FEE_RATE,
    surcharge_range: Tuple[int, int] = SURCHARGE_RANGE,
    rng: Optional[random.Random] = None,
) -> PricingQuote:
    if price <= 0:
        raise ValueError("price must be positive")
    lo, hi = surcharge_range
    if lo < 0 or hi < lo:
        raise ValueError(f"bad surcharge range: {surcharge_range}")
    base = base_amount(price, flat_fee, rate)
    surcharge = (rng or random).randint(lo, hi)
    return PricingQuote(
        price=price,
        base=base,
        fee=base - price,
        surcharge=surcharge,
        nominal=base + surcharge,
    )


def manual_quote(price: int) -> PricingQuote:
    # settled out-of-band: nothing is added
    return PricingQuote(price=price, base=price, fee=0, surcharge=0, nominal=0)
