"""
Stock ledger and optimistic locking

Tests:
  1. Conservation: initial + IN - OUT == stock across orders and restocks
  2. Restock validation and role gating
  3. Concurrent last-unit orders never oversell
  4. A lost optimistic-lock race is retried without double-reserving
  5. A stale version is detected on write
  6. The retry decorator gives up with ConcurrencyConflict
  7. Stock rows are locked in product-id order whatever the cart order
"""
import asyncio

import pytest
from sqlalchemy import func, select, update

from fulfillment.core.errors import ConcurrencyConflict, InsufficientStock
from fulfillment.core.optimistic_lock import StaleDataError, with_optimistic_retry
from fulfillment.db import inventory_ops
from fulfillment.models import MovementDirection, Product, StockMovement
from fulfillment.services import reservation
from fulfillment.services.reservation import CartItem, place_order


# ─── Test 1: Conservation ──────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_ledger_accounts_for_every_unit(client, make_product, user_headers, admin_headers):
    p1 = await make_product("P1", stock=10)
    for qty in (2, 3):
        r = await client.post(
            "/orders",
            json={"items": [{"product_id": p1.id, "quantity": qty}], "fulfillment_type": "TAKEAWAY"},
            headers=user_headers,
        )
        assert r.status_code == 201, r.text

    r = await client.post(f"/stock/{p1.id}/restock", json={"quantity": 7, "reason": "Morning delivery"},
                          headers=admin_headers)
    assert r.status_code == 201, r.text
    assert r.json()["direction"] == "IN"
    assert r.json()["stock_after"] == 12
    assert r.json()["actor_id"] == "admin-001"

    audit = (await client.get(f"/stock/{p1.id}/audit", headers=admin_headers)).json()
    assert audit["initial_stock"] == 10
    assert audit["total_out"] == 5
    assert audit["total_in"] == 7
    assert audit["current_stock"] == 12
    assert audit["consistent"] is True

    movements = (await client.get(f"/stock/{p1.id}/movements", headers=admin_headers)).json()
    assert [m["direction"] for m in movements] == ["IN", "OUT", "OUT"]
    assert movements[1]["reason"].startswith("Order ORD-")
    assert movements[1]["order_id"] is not None


# ─── Test 2: Restock validation ────────────────────────────────────────────────
@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{"quantity": 0, "reason": "x"}, {"quantity": -4, "reason": "x"},
                                     {"quantity": 5, "reason": "  "}])
async def test_invalid_restock_is_rejected(client, make_product, admin_headers, payload):
    p1 = await make_product("P1", stock=4)

    r = await client.post(f"/stock/{p1.id}/restock", json=payload, headers=admin_headers)

    assert r.status_code == 400
    assert r.json()["error"] == "InvalidRestock"
    assert (await client.get(f"/stock/{p1.id}", headers=admin_headers)).json()["available"] == 4


@pytest.mark.asyncio
async def test_restock_requires_admin(client, make_product, kitchen_headers, admin_headers):
    p1 = await make_product("P1", stock=4)

    r = await client.post(f"/stock/{p1.id}/restock", json={"quantity": 5, "reason": "x"}, headers=kitchen_headers)
    assert r.status_code == 403

    r = await client.post("/stock/ghost/restock", json={"quantity": 5, "reason": "x"}, headers=admin_headers)
    assert r.status_code == 404


# ─── Test 3: No oversell ───────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_concurrent_orders_for_last_unit(make_product, session_factory):
    product = await make_product("Last Slice", stock=1)
    contenders = 8

    async def attempt(i: int) -> str:
        async with session_factory() as db:
            try:
                await place_order(db, f"user-{i}", [CartItem(product.id, 1)], "TAKEAWAY")
                return "ok"
            except InsufficientStock:
                return "insufficient"

    results = await asyncio.gather(*(attempt(i) for i in range(contenders)))

    assert results.count("ok") == 1
    assert results.count("insufficient") == contenders - 1
    async with session_factory() as db:
        assert await inventory_ops.get_available(db, product.id) == 0
        audit = await inventory_ops.audit_stock(db, product.id)
        assert audit["consistent"] is True
        assert audit["total_out"] == 1


# ─── Test 4: Retry after a lost race ───────────────────────────────────────────
@pytest.mark.asyncio
async def test_lost_race_is_retried_without_double_reserve(make_product, session_factory, monkeypatch):
    product = await make_product("P1", stock=10)
    real_reserve = inventory_ops.reserve_stock
    calls = {"n": 0}

    async def reserve_after_concurrent_write(db, prod, quantity, order):
        calls["n"] += 1
        if calls["n"] == 1:
            # Another writer bumps the version between our read and our write
            await db.execute(
                update(Product)
                .where(Product.id == prod.id)
                .values(version_id=Product.version_id + 1)
                .execution_options(synchronize_session=False)
            )
        return await real_reserve(db, prod, quantity, order)

    monkeypatch.setattr(reservation, "reserve_stock", reserve_after_concurrent_write)

    async with session_factory() as db:
        order = await place_order(db, "user-001", [CartItem(product.id, 3)], "TAKEAWAY")

    assert calls["n"] == 2
    assert order.status.value == "PENDING"
    async with session_factory() as db:
        assert await inventory_ops.get_available(db, product.id) == 7
        outs = await db.scalar(
            select(func.count()).select_from(StockMovement).where(StockMovement.direction == MovementDirection.OUT)
        )
        assert outs == 1


# ─── Test 5: Stale write ───────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_stale_version_is_detected(make_product, session_factory):
    product = await make_product("P1", stock=10)

    async with session_factory() as stale_db:
        stale = await inventory_ops.load_product(stale_db, product.id)
        await stale_db.commit()

        async with session_factory() as other_db:
            await inventory_ops.restock(other_db, product.id, 5, "Delivery")

        with pytest.raises(StaleDataError):
            await inventory_ops._write_stock(stale_db, stale, 1)
        await stale_db.rollback()

    async with session_factory() as db:
        assert await inventory_ops.get_available(db, product.id) == 15


# ─── Test 6: Retry exhaustion ──────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_retry_exhaustion_raises_concurrency_conflict():
    attempts = {"n": 0}

    @with_optimistic_retry(max_retries=3)
    async def always_conflicts():
        attempts["n"] += 1
        raise StaleDataError("lost")

    with pytest.raises(ConcurrencyConflict):
        await always_conflicts()
    assert attempts["n"] == 3


@pytest.mark.asyncio
async def test_retry_returns_first_success():
    attempts = {"n": 0}

    @with_optimistic_retry(max_retries=5)
    async def conflicts_twice():
        attempts["n"] += 1
        if attempts["n"] < 3:
            raise StaleDataError("lost")
        return "done"

    assert await conflicts_twice() == "done"
    assert attempts["n"] == 3


# ─── Test 7: Stock lock order ──────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_stock_rows_are_reserved_in_product_id_order(make_product, session_factory, monkeypatch):
    a = await make_product("Soup", stock=10)
    b = await make_product("Bread", stock=10)
    low, high = sorted([a, b], key=lambda p: p.id)
    real_reserve = inventory_ops.reserve_stock
    seen = []

    async def recording_reserve(db, prod, quantity, order):
        seen.append(prod.id)
        return await real_reserve(db, prod, quantity, order)

    monkeypatch.setattr(reservation, "reserve_stock", recording_reserve)

    async with session_factory() as db:
        order = await place_order(db, "user-001", [CartItem(high.id, 2), CartItem(low.id, 1)], "TAKEAWAY")

    assert seen == [low.id, high.id]
    assert [line.product_id for line in order.lines] == [high.id, low.id]
    assert [line.position for line in order.lines] == [0, 1]


@pytest.mark.asyncio
async def test_reversed_carts_both_reserve(make_product, session_factory):
    a = await make_product("Soup", stock=10)
    b = await make_product("Bread", stock=10)

    async def order_cart(user_id, first, second):
        async with session_factory() as db:
            return await place_order(db, user_id, [CartItem(first.id, 1), CartItem(second.id, 1)], "TAKEAWAY")

    orders = await asyncio.gather(order_cart("user-1", a, b), order_cart("user-2", b, a))

    assert all(o.status.value == "PENDING" for o in orders)
    async with session_factory() as db:
        for product in (a, b):
            assert await inventory_ops.get_available(db, product.id) == 8
            audit = await inventory_ops.audit_stock(db, product.id)
            assert audit["consistent"] is True
            assert audit["total_out"] == 2
