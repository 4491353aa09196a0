"""
Fulfillment Service — Orders API

Flow for POST /orders:
  1. JWT validated by middleware (request.state.user set)
  2. Idempotency-Key replayed from Redis when seen before
  3. Reservation transaction: validate cart, check + decrement stock, write order
  4. Return the PENDING order with its line snapshots
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.security import Permission, Principal, get_principal
from fulfillment.db.database import get_db
from fulfillment.models.order import FulfillmentType, OrderStatus
from fulfillment.schemas.order import OrderResponse, PlaceOrderRequest, StatusUpdateRequest
from fulfillment.services.orders import get_order, list_orders
from fulfillment.services.reservation import CartItem, place_order
from fulfillment.services.workflow import advance_order_status

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: PlaceOrderRequest,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    principal.require(Permission.PLACE_ORDER)
    return await place_order(
        db,
        user_id=principal.user_id,
        items=[CartItem(product_id=i.product_id, quantity=i.quantity) for i in payload.items],
        fulfillment_type=payload.fulfillment_type,
        table_number=payload.table_number,
        notes=payload.notes,
    )


@router.get("", response_model=list[OrderResponse])
async def read_orders(
    status_filter: OrderStatus | None = Query(None, alias="status"),
    fulfillment_type: FulfillmentType | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    """Own orders for users and kitchen staff; every order for admins."""
    return await list_orders(
        db, principal, status=status_filter, fulfillment_type=fulfillment_type, page=page, limit=limit
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def read_order(
    order_id: str,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    return await get_order(db, principal, order_id)


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: str,
    payload: StatusUpdateRequest,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    return await advance_order_status(db, principal, order_id, payload.status)
