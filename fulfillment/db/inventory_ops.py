"""
Fulfillment Service — Inventory ledger with optimistic locking

Stock is only ever written here. Every write is a conditional UPDATE:

  - READ:  fetch current stock + version_id
  - WRITE: UPDATE ... WHERE id = <id> AND version_id = <read_version>
  - If another transaction committed first, no row matches → StaleDataError

reserve_stock never commits; it runs inside the caller's reservation
transaction so the stock check, the decrement and the movement row land
together with the order or not at all.
"""
import logging

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from fulfillment.core.errors import InsufficientStock, InvalidRestock, ProductNotFound
from fulfillment.core.optimistic_lock import StaleDataError, with_optimistic_retry
from fulfillment.models.order import Order
from fulfillment.models.product import MovementDirection, Product, StockMovement

logger = logging.getLogger(__name__)


async def load_product(db: AsyncSession, product_id: str) -> Product:
    result = await db.execute(
        select(Product).where(Product.id == product_id).execution_options(populate_existing=True)
    )
    product: Product | None = result.scalar_one_or_none()
    if product is None:
        raise ProductNotFound(product_id)
    return product


async def get_available(db: AsyncSession, product_id: str) -> int:
    result = await db.execute(select(Product.stock).where(Product.id == product_id))
    stock = result.scalar_one_or_none()
    if stock is None:
        raise ProductNotFound(product_id)
    return stock


async def _write_stock(db: AsyncSession, product: Product, new_stock: int) -> None:
    expected_version = product.version_id
    result = await db.execute(
        update(Product)
        .where(Product.id == product.id, Product.version_id == expected_version)
        .values(stock=new_stock, version_id=expected_version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise StaleDataError(f"Optimistic lock conflict on product {product.id}: version changed concurrently.")
    # Already persisted by the UPDATE; keep the instance in step without
    # marking it dirty
    set_committed_value(product, "stock", new_stock)
    set_committed_value(product, "version_id", expected_version + 1)


async def reserve_stock(db: AsyncSession, product: Product, quantity: int, order: Order) -> StockMovement:
    """Decrement stock for one order line and append the OUT movement."""
    if quantity > product.stock:
        raise InsufficientStock(product.id, product.name, requested=quantity, available=product.stock)

    new_stock = product.stock - quantity
    await _write_stock(db, product, new_stock)

    movement = StockMovement(
        product_id=product.id,
        direction=MovementDirection.OUT,
        quantity=quantity,
        stock_after=new_stock,
        reason=f"Order {order.order_number}",
        order_id=order.id,
    )
    db.add(movement)
    return movement


async def release_stock(db: AsyncSession, product: Product, quantity: int, order: Order) -> StockMovement:
    """Return a cancelled order line's units; runs inside the caller's transaction."""
    new_stock = product.stock + quantity
    await _write_stock(db, product, new_stock)

    movement = StockMovement(
        product_id=product.id,
        direction=MovementDirection.IN,
        quantity=quantity,
        stock_after=new_stock,
        reason=f"Cancelled {order.order_number}",
        order_id=order.id,
    )
    db.add(movement)
    return movement


@with_optimistic_retry()
async def restock(
    db: AsyncSession,
    product_id: str,
    quantity: int,
    reason: str,
    actor_id: str | None = None,
) -> StockMovement:
    """Administrative stock increase; its own unit of work."""
    if quantity <= 0:
        raise InvalidRestock(f"Restock quantity must be positive, got {quantity}.", quantity=quantity)
    if not reason or not reason.strip():
        raise InvalidRestock("A restock reason is required.")

    try:
        product = await load_product(db, product_id)
        new_stock = product.stock + quantity
        await _write_stock(db, product, new_stock)
        movement = StockMovement(
            product_id=product.id,
            direction=MovementDirection.IN,
            quantity=quantity,
            stock_after=new_stock,
            reason=reason.strip(),
            actor_id=actor_id,
        )
        db.add(movement)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Restocked %s by %d (now %d): %s", product_id, quantity, new_stock, reason)
    return movement


async def list_movements(db: AsyncSession, product_id: str, limit: int = 100) -> list[StockMovement]:
    await get_available(db, product_id)
    result = await db.execute(
        select(StockMovement)
        .where(StockMovement.product_id == product_id)
        .order_by(StockMovement.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def audit_stock(db: AsyncSession, product_id: str) -> dict:
    """Check initial_stock + IN - OUT == stock for one product."""
    product = await load_product(db, product_id)
    totals = await db.execute(
        select(StockMovement.direction, func.coalesce(func.sum(StockMovement.quantity), 0))
        .where(StockMovement.product_id == product_id)
        .group_by(StockMovement.direction)
    )
    by_direction = {direction: int(total) for direction, total in totals.all()}
    total_in = by_direction.get(MovementDirection.IN, 0)
    total_out = by_direction.get(MovementDirection.OUT, 0)
    expected = product.initial_stock + total_in - total_out
    if expected != product.stock:
        logger.error(
            "Stock ledger mismatch for %s: ledger says %d, product row says %d",
            product_id, expected, product.stock,
        )
    return {
        "product_id": product.id,
        "initial_stock": product.initial_stock,
        "total_in": total_in,
        "total_out": total_out,
        "current_stock": product.stock,
        "consistent": expected == product.stock,
    }
