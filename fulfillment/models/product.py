"""
Fulfillment Service — Product and stock ledger models

[CONFIG DATA]        products — managed by store admins
[TRANSACTIONAL DATA] stock_movements — append-only, never updated or deleted
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment.core.identifiers import new_id, utcnow
from fulfillment.db.database import Base


class ProductCategory(str, PyEnum):
    FOOD = "FOOD"
    DRINK = "DRINK"


class MovementDirection(str, PyEnum):
    IN = "IN"
    OUT = "OUT"


class Product(Base):
    """
    version_id is the optimistic locking column, incremented on every stock
    write. stock is only written by the inventory ledger (reserve/restock).
    """
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    category: Mapped[ProductCategory | None] = mapped_column(
        Enum(ProductCategory, name="product_category"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    initial_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # audit baseline
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)  # optimistic lock
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Product {self.id} {self.name!r} stock={self.stock} v{self.version_id}>"


class StockMovement(Base):
    """
    [TRANSACTIONAL DATA] — one row per stock-affecting event.
    quantity is always positive; direction carries the sign.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        Index("ix_stock_movements_product_created", "product_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id"), nullable=False)
    direction: Mapped[MovementDirection] = mapped_column(
        Enum(MovementDirection, name="movement_direction"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    stock_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    order_id: Mapped[str | None] = mapped_column(ForeignKey("orders.id"), nullable=True, index=True)
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.direction == MovementDirection.IN else -self.quantity

    def __repr__(self) -> str:
        return f"<StockMovement {self.direction.value} {self.quantity} on {self.product_id}>"
