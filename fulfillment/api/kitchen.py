"""
Fulfillment Service — Kitchen queue routes
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.security import Permission, Principal, get_principal
from fulfillment.db.database import get_db
from fulfillment.schemas.order import OrderResponse
from fulfillment.services.workflow import list_kitchen_queue

router = APIRouter(prefix="/kitchen", tags=["kitchen"])


@router.get("/queue", response_model=list[OrderResponse])
async def kitchen_queue(
    page: int = Query(1, ge=1, description="1-based page of KITCHEN_QUEUE_PAGE_SIZE orders"),
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    """CONFIRMED and PREPARING orders, oldest first."""
    principal.require(Permission.VIEW_KITCHEN_QUEUE)
    return await list_kitchen_queue(db, page=page)
