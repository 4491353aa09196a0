"""
Fulfillment Service — Clock and unique identifier generation
"""
import uuid
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _stamp() -> str:
    return utcnow().strftime("%Y%m%d%H%M%S")


def generate_order_number() -> str:
    """ORD-<timestamp>-<random>. Uniqueness comes from the uuid4 suffix; the
    orders.order_number unique constraint backs it up."""
    return f"ORD-{_stamp()}-{uuid.uuid4().hex[:10].upper()}"


def generate_transaction_id() -> str:
    return f"TXN-{_stamp()}-{uuid.uuid4().hex[:12].upper()}"
