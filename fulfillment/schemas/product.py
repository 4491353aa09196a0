"""
Fulfillment Service — Product, stock and health schemas
"""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from fulfillment.models.product import MovementDirection, ProductCategory


class ProductCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    category: ProductCategory | None = None
    stock: int = Field(0, ge=0)
    is_active: bool = True


class ProductUpdateRequest(BaseModel):
    # No stock field: stock only moves through restock and orders
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    price: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    category: ProductCategory | None = None
    is_active: bool | None = None


class ProductResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    name: str
    description: str | None = None
    price: Decimal
    category: ProductCategory | None = None
    is_active: bool
    stock: int
    created_at: datetime
    updated_at: datetime


class StockResponse(BaseModel):
    product_id: str
    available: int


class RestockRequest(BaseModel):
    quantity: int = Field(..., examples=[20])
    reason: str = Field(..., max_length=255, examples=["Morning delivery"])


class MovementResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    product_id: str
    direction: MovementDirection
    quantity: int
    stock_after: int
    reason: str
    order_id: str | None = None
    actor_id: str | None = None
    created_at: datetime


class StockAuditResponse(BaseModel):
    product_id: str
    initial_stock: int
    total_in: int
    total_out: int
    current_stock: int
    consistent: bool


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    dependencies: dict[str, str]
