"""
Fulfillment Service — Product catalog

Catalog edits never touch stock; stock only moves through the inventory
ledger so every unit stays accounted for.
"""
import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.errors import InvalidOrderMetadata
from fulfillment.db.inventory_ops import load_product
from fulfillment.models.product import Product, ProductCategory

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "description", "price", "category", "is_active")


async def create_product(
    db: AsyncSession,
    name: str,
    price: Decimal,
    stock: int = 0,
    description: str | None = None,
    category: ProductCategory | None = None,
    is_active: bool = True,
) -> Product:
    if stock < 0:
        raise InvalidOrderMetadata("Initial stock cannot be negative.", field="stock")
    if price < 0:
        raise InvalidOrderMetadata("Price cannot be negative.", field="price")

    product = Product(
        name=name.strip(),
        description=description,
        price=price,
        category=category,
        is_active=is_active,
        stock=stock,
        initial_stock=stock,
    )
    db.add(product)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("Product %s (%s) created with stock %d", product.id, product.name, stock)
    return product


async def get_product(db: AsyncSession, product_id: str) -> Product:
    return await load_product(db, product_id)


async def update_product(db: AsyncSession, product_id: str, changes: dict) -> Product:
    """Apply catalog edits. Only the edited columns are written, so a
    concurrent stock write is never overwritten."""
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise InvalidOrderMetadata(f"Fields not editable: {', '.join(sorted(unknown))}.", fields=sorted(unknown))
    if changes.get("price") is not None and changes["price"] < 0:
        raise InvalidOrderMetadata("Price cannot be negative.", field="price")

    try:
        product = await load_product(db, product_id)
        for field, value in changes.items():
            setattr(product, field, value)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Product %s updated: %s", product_id, ", ".join(sorted(changes)) or "no changes")
    return product
