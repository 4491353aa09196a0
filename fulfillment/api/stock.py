"""
Fulfillment Service — Stock ledger routes
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.security import Permission, Principal, get_principal
from fulfillment.db.database import get_db
from fulfillment.db.inventory_ops import audit_stock, get_available, list_movements, restock
from fulfillment.schemas.product import MovementResponse, RestockRequest, StockAuditResponse, StockResponse

router = APIRouter(prefix="/stock", tags=["stock"])


@router.get("/{product_id}", response_model=StockResponse)
async def read_stock(product_id: str, db: AsyncSession = Depends(get_db)):
    return StockResponse(product_id=product_id, available=await get_available(db, product_id))


@router.post("/{product_id}/restock", response_model=MovementResponse, status_code=status.HTTP_201_CREATED)
async def restock_product(
    product_id: str,
    payload: RestockRequest,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    principal.require(Permission.MANAGE_STOCK)
    return await restock(db, product_id, payload.quantity, payload.reason, actor_id=principal.user_id)


@router.get("/{product_id}/movements", response_model=list[MovementResponse])
async def read_movements(
    product_id: str,
    limit: int = Query(100, ge=1, le=1000),
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    principal.require(Permission.MANAGE_STOCK)
    return await list_movements(db, product_id, limit=limit)


@router.get("/{product_id}/audit", response_model=StockAuditResponse)
async def read_audit(
    product_id: str,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    """initial_stock + IN - OUT must equal current stock."""
    principal.require(Permission.MANAGE_STOCK)
    return await audit_stock(db, product_id)
