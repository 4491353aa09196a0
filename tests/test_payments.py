"""
Payment submission

Tests:
  1. Second payment for the same order is AlreadyPaid with a single row
  2. QRIS and EDC payments carry a transaction id, CASH does not
  3. Unknown payment method
  4. Only the owner may pay
  5. Orders that left PENDING without payment cannot be paid
  6. Concurrent first payments confirm the order once
"""
import asyncio

import pytest
from sqlalchemy import func, select

from fulfillment.core.errors import AlreadyPaid
from fulfillment.core.security import Principal, Role
from fulfillment.models import Payment, PaymentStatus
from fulfillment.services.payments import submit_payment


async def place(client, headers, product_id, qty=1):
    r = await client.post(
        "/orders",
        json={"items": [{"product_id": product_id, "quantity": qty}], "fulfillment_type": "TAKEAWAY"},
        headers=headers,
    )
    assert r.status_code == 201, r.text
    return r.json()


# ─── Test 1: Idempotency ───────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_second_payment_is_already_paid(client, make_product, user_headers, session_factory):
    p1 = await make_product("P1", stock=10)
    order = await place(client, user_headers, p1.id, 2)

    first = await client.post("/payments", json={"order_id": order["id"], "method": "CASH"}, headers=user_headers)
    assert first.status_code == 201, first.text

    second = await client.post("/payments", json={"order_id": order["id"], "method": "QRIS"}, headers=user_headers)
    assert second.status_code == 409
    assert second.json()["error"] == "AlreadyPaid"
    assert second.json()["order_id"] == order["id"]

    async with session_factory() as db:
        payments = (await db.execute(select(Payment).where(Payment.order_id == order["id"]))).scalars().all()
    assert len(payments) == 1
    assert payments[0].status == PaymentStatus.PAID
    assert payments[0].method.value == "CASH"

    r = await client.get(f"/orders/{order['id']}", headers=user_headers)
    assert r.json()["status"] == "CONFIRMED"


# ─── Test 2: Transaction ids ───────────────────────────────────────────────────
@pytest.mark.asyncio
@pytest.mark.parametrize("method, has_txn", [("CASH", False), ("QRIS", True), ("edc", True)])
async def test_transaction_id_depends_on_method(client, make_product, user_headers, method, has_txn):
    p1 = await make_product("P1", stock=10)
    order = await place(client, user_headers, p1.id)

    r = await client.post("/payments", json={"order_id": order["id"], "method": method}, headers=user_headers)

    assert r.status_code == 201, r.text
    payment = r.json()["payment"]
    assert payment["method"] == method.upper()
    assert payment["paid_at"] is not None
    if has_txn:
        assert payment["transaction_id"].startswith("TXN-")
    else:
        assert payment["transaction_id"] is None


# ─── Test 3: Unknown method ────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_unknown_method_is_rejected(client, make_product, user_headers, session_factory):
    p1 = await make_product("P1", stock=10)
    order = await place(client, user_headers, p1.id)

    r = await client.post("/payments", json={"order_id": order["id"], "method": "BITCOIN"}, headers=user_headers)

    assert r.status_code == 400
    assert r.json()["error"] == "InvalidPaymentMethod"
    async with session_factory() as db:
        assert await db.scalar(select(func.count()).select_from(Payment)) == 0
    assert (await client.get(f"/orders/{order['id']}", headers=user_headers)).json()["status"] == "PENDING"


# ─── Test 4: Ownership ─────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_only_owner_can_pay(client, make_product, user_headers, other_user_headers, admin_headers):
    p1 = await make_product("P1", stock=10)
    order = await place(client, user_headers, p1.id)

    for headers in (other_user_headers, admin_headers):
        r = await client.post("/payments", json={"order_id": order["id"], "method": "CASH"}, headers=headers)
        assert r.status_code == 403
        assert r.json()["error"] == "Forbidden"

    r = await client.post("/payments", json={"order_id": "missing", "method": "CASH"}, headers=user_headers)
    assert r.status_code == 404
    assert r.json()["error"] == "OrderNotFound"


# ─── Test 5: Cancelled before payment ──────────────────────────────────────────
@pytest.mark.asyncio
async def test_cancelled_order_cannot_be_paid(client, make_product, user_headers, admin_headers):
    p1 = await make_product("P1", stock=10)
    order = await place(client, user_headers, p1.id)

    r = await client.patch(f"/orders/{order['id']}/status", json={"status": "CANCELLED"}, headers=admin_headers)
    assert r.status_code == 200, r.text

    r = await client.post("/payments", json={"order_id": order["id"], "method": "CASH"}, headers=user_headers)
    assert r.status_code == 409
    assert r.json()["error"] == "InvalidStatusTransition"
    assert r.json()["current_status"] == "CANCELLED"


# ─── Test 6: Concurrent first payments ─────────────────────────────────────────
@pytest.mark.asyncio
async def test_concurrent_payments_settle_once(client, make_product, user_headers, session_factory):
    p1 = await make_product("P1", stock=10)
    order = await place(client, user_headers, p1.id)
    principal = Principal(user_id="user-001", role=Role.USER)

    async def pay(method: str) -> str:
        async with session_factory() as db:
            try:
                await submit_payment(db, principal, order["id"], method)
                return "paid"
            except AlreadyPaid:
                return "already"

    results = await asyncio.gather(*(pay(m) for m in ("CASH", "QRIS", "EDC", "CASH")))

    assert results.count("paid") == 1
    assert results.count("already") == 3
    async with session_factory() as db:
        assert await db.scalar(select(func.count()).select_from(Payment)) == 1
