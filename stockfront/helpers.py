import hmac
import random
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# ----------------------------
# Clock
# ----------------------------
def now_ts() -> float:
    # wall clock, epoch seconds; stored in the Float timestamp columns
    return time.time()


def to_iso(ts: Optional[float]) -> Optional[str]:
    return None if ts is None else datetime.fromtimestamp(
        ts, tz=timezone.utc
    ).isoformat()


# ----------------------------
# Identifiers
# ----------------------------
def new_order_id() -> str:
    return uuid.uuid4().hex


def new_ref_code() -> str:
    # TRX-<epoch millis>-<0..999>; also the gateway's reff_id
    return f"TRX-{int(now_ts() * 1000)}-{random.randint(0, 999)}"


# ----------------------------
# Input
# ----------------------------
def clean_email(raw: Optional[str]) -> Optional[str]:
    """Trimmed address, or None if it does not look like one."""
    email = (raw or "").strip()
    if not _EMAIL_RE.match(email):
        return None
    return email


def ct_equal(given: Optional[str], expected: str) -> bool:
    if given is None:
        return False
    return hmac.compare_digest(given.encode(), expected.encode())
