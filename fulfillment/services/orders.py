"""
Fulfillment Service — Order reads
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fulfillment.core.config import get_settings
from fulfillment.core.errors import Forbidden, InvalidOrderMetadata, OrderNotFound
from fulfillment.core.security import Permission, Principal
from fulfillment.models.order import FulfillmentType, Order, OrderStatus

settings = get_settings()


def _with_children(query):
    return query.options(selectinload(Order.lines), selectinload(Order.payment))


async def load_order(db: AsyncSession, order_id: str) -> Order:
    """Fetch an order with lines and payment, refreshing any stale instance."""
    result = await db.execute(
        _with_children(select(Order).where(Order.id == order_id)).execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise OrderNotFound(order_id)
    return order


async def get_order(db: AsyncSession, principal: Principal, order_id: str) -> Order:
    order = await load_order(db, order_id)
    if order.user_id != principal.user_id and not principal.can(Permission.READ_ANY_ORDER):
        raise Forbidden(f"Order {order_id} belongs to another user.", order_id=order_id)
    return order


async def list_orders(
    db: AsyncSession,
    principal: Principal,
    status: OrderStatus | None = None,
    fulfillment_type: FulfillmentType | None = None,
    page: int = 1,
    limit: int = 20,
) -> list[Order]:
    """Newest first. Callers without READ_ANY_ORDER only ever see their own orders."""
    if page < 1 or limit < 1:
        raise InvalidOrderMetadata("page and limit must be positive.", page=page, limit=limit)
    limit = min(limit, settings.ORDER_LIST_MAX_LIMIT)

    query = select(Order)
    if not principal.can(Permission.READ_ANY_ORDER):
        query = query.where(Order.user_id == principal.user_id)
    if status is not None:
        query = query.where(Order.status == status)
    if fulfillment_type is not None:
        query = query.where(Order.fulfillment_type == fulfillment_type)

    result = await db.execute(
        _with_children(query)
        .order_by(Order.created_at.desc(), Order.order_number.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all())
