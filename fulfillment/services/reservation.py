"""
Fulfillment Service — Reservation transaction (cart → order)

One unit of work turns a cart into a PENDING order:

  1. cart is non-empty and every quantity is a positive integer
  2. every product exists and is active
  3. every product has enough stock (read inside the transaction)
  4. DINE_IN orders carry a table number

Then the order, its lines, the stock decrements and one OUT movement per
line are written and committed together. Any failure rolls everything back.
A lost optimistic-lock race rolls back and replays the whole transaction,
re-reading stock, so a retry can never reserve twice.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.errors import InsufficientStock, InvalidOrderMetadata, ProductNotFound
from fulfillment.core.identifiers import generate_order_number, new_id
from fulfillment.core.optimistic_lock import with_optimistic_retry
from fulfillment.db.inventory_ops import load_product, reserve_stock
from fulfillment.models.order import FulfillmentType, Order, OrderLine, OrderStatus
from fulfillment.models.product import Product
from fulfillment.services.orders import load_order

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class CartItem:
    product_id: str
    quantity: int


def merge_cart(items: list[CartItem]) -> dict[str, int]:
    """Validate cart shape and fold repeated products into one quantity,
    keeping first-seen order."""
    if not items:
        raise InvalidOrderMetadata("Cart is empty.", field="items")

    merged: dict[str, int] = {}
    for index, item in enumerate(items):
        if not item.product_id:
            raise InvalidOrderMetadata(f"items[{index}].product_id is required.", field=f"items[{index}].product_id")
        if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity <= 0:
            raise InvalidOrderMetadata(
                f"items[{index}].quantity must be a positive integer, got {item.quantity!r}.",
                field=f"items[{index}].quantity",
            )
        merged[item.product_id] = merged.get(item.product_id, 0) + item.quantity
    return merged


def resolve_fulfillment(fulfillment_type: FulfillmentType | str, table_number: str | None) -> tuple[FulfillmentType, str | None]:
    try:
        kind = FulfillmentType(fulfillment_type)
    except ValueError:
        raise InvalidOrderMetadata(
            f"Unknown fulfillment type {fulfillment_type!r}; expected DINE_IN or TAKEAWAY.",
            field="fulfillment_type",
        )
    table = (table_number or "").strip() or None
    if kind == FulfillmentType.DINE_IN and table is None:
        raise InvalidOrderMetadata("Dine-in orders require a table number.", field="table_number")
    if kind == FulfillmentType.TAKEAWAY:
        table = None
    return kind, table


async def _load_active_products(db: AsyncSession, product_ids: list[str]) -> dict[str, Product]:
    products: dict[str, Product] = {}
    for product_id in product_ids:
        product = await load_product(db, product_id)
        if not product.is_active:
            raise ProductNotFound(product_id, reason="is not available")
        products[product_id] = product
    return products


@with_optimistic_retry()
async def place_order(
    db: AsyncSession,
    user_id: str,
    items: list[CartItem],
    fulfillment_type: FulfillmentType | str,
    table_number: str | None = None,
    notes: str | None = None,
) -> Order:
    cart = merge_cart(items)

    try:
        products = await _load_active_products(db, list(cart))

        for product_id, quantity in cart.items():
            product = products[product_id]
            if quantity > product.stock:
                raise InsufficientStock(product.id, product.name, requested=quantity, available=product.stock)

        kind, table = resolve_fulfillment(fulfillment_type, table_number)

        order = Order(
            id=new_id(),
            order_number=generate_order_number(),
            user_id=user_id,
            status=OrderStatus.PENDING,
            fulfillment_type=kind,
            table_number=table,
            notes=(notes or "").strip() or None,
        )
        total = Decimal("0.00")
        for position, (product_id, quantity) in enumerate(cart.items()):
            product = products[product_id]
            unit_price = Decimal(product.price).quantize(CENTS)
            subtotal = (unit_price * quantity).quantize(CENTS)
            total += subtotal
            order.lines.append(OrderLine(
                position=position,
                product_id=product.id,
                product_name=product.name,
                unit_price=unit_price,
                quantity=quantity,
                subtotal=subtotal,
            ))
        order.total_amount = total
        db.add(order)

        # Stock rows are written in product-id order so two carts holding the
        # same products in different order never wait on each other's locks.
        # Line positions keep the cart order.
        for product_id in sorted(cart):
            await reserve_stock(db, products[product_id], cart[product_id], order)

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Order %s placed by %s: %d line(s), total %s",
        order.order_number, user_id, len(cart), total,
    )
    return await load_order(db, order.id)
