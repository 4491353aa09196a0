"""
Fulfillment Service — Product catalog routes
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.security import Permission, Principal, get_principal
from fulfillment.db.database import get_db
from fulfillment.schemas.product import ProductCreateRequest, ProductResponse, ProductUpdateRequest
from fulfillment.services.products import create_product, get_product, update_product

router = APIRouter(prefix="/products", tags=["products"])


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def add_product(
    payload: ProductCreateRequest,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    principal.require(Permission.MANAGE_PRODUCTS)
    return await create_product(db, **payload.model_dump())


@router.get("/{product_id}", response_model=ProductResponse)
async def read_product(product_id: str, db: AsyncSession = Depends(get_db)):
    return await get_product(db, product_id)


@router.patch("/{product_id}", response_model=ProductResponse)
async def edit_product(
    product_id: str,
    payload: ProductUpdateRequest,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    """Name, price, category and availability edits. Existing orders keep
    the name and price they were placed with."""
    principal.require(Permission.MANAGE_PRODUCTS)
    return await update_product(db, product_id, payload.model_dump(exclude_unset=True))
