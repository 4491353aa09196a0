"""
Fulfillment Service — Order status workflow and kitchen queue

Allowed edges:

    PENDING   → CONFIRMED (payment only), CANCELLED
    CONFIRMED → PREPARING, CANCELLED
    PREPARING → READY
    READY     → COMPLETED
    COMPLETED, CANCELLED → nothing

Every status write is a compare-and-swap on the status the caller read,
so two concurrent advances from the same state cannot both succeed.
"""
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from fulfillment.core.config import get_settings
from fulfillment.core.errors import InvalidOrderMetadata, InvalidStatusTransition
from fulfillment.core.identifiers import utcnow
from fulfillment.core.optimistic_lock import StaleDataError, with_optimistic_retry
from fulfillment.core.security import Permission, Principal
from fulfillment.db.inventory_ops import load_product, release_stock
from fulfillment.models.order import Order, OrderStatus
from fulfillment.services.orders import load_order

logger = logging.getLogger(__name__)
settings = get_settings()

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# PENDING → CONFIRMED belongs to payment submission
PAYMENT_ONLY_TRANSITIONS = frozenset({(OrderStatus.PENDING, OrderStatus.CONFIRMED)})

KITCHEN_QUEUE_STATUSES = (OrderStatus.CONFIRMED, OrderStatus.PREPARING)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def check_manual_transition(order: Order, target: OrderStatus) -> None:
    current = order.status
    if current == target:
        raise InvalidStatusTransition(order.id, current, target, reason=f"Order is already {current.value}.")
    if current.is_terminal:
        raise InvalidStatusTransition(order.id, current, target, reason=f"{current.value} is a final state.")
    if (current, target) in PAYMENT_ONLY_TRANSITIONS:
        raise InvalidStatusTransition(order.id, current, target, reason="Orders are confirmed by payment.")
    if target == OrderStatus.CANCELLED and not can_transition(current, target):
        raise InvalidStatusTransition(
            order.id, current, target, reason="Only PENDING or CONFIRMED orders can be cancelled."
        )
    if not can_transition(current, target):
        raise InvalidStatusTransition(order.id, current, target)


async def compare_and_set_status(
    db: AsyncSession, order: Order, expected: OrderStatus, target: OrderStatus
) -> None:
    """Move order.status from expected to target or raise StaleDataError."""
    result = await db.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == expected)
        .values(status=target, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise StaleDataError(f"Order {order.id} left {expected.value} concurrently.")
    set_committed_value(order, "status", target)


def parse_status(value: OrderStatus | str) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidOrderMetadata(
            f"Unknown order status {value!r}; expected one of {', '.join(s.value for s in OrderStatus)}.",
            field="status",
        )


@with_optimistic_retry()
async def advance_order_status(
    db: AsyncSession,
    principal: Principal,
    order_id: str,
    new_status: OrderStatus | str,
) -> Order:
    target = parse_status(new_status)
    if target == OrderStatus.CANCELLED:
        principal.require(Permission.CANCEL_ORDER)
    else:
        principal.require(Permission.ADVANCE_ORDER)

    try:
        order = await load_order(db, order_id)
        previous = order.status
        check_manual_transition(order, target)
        await compare_and_set_status(db, order, previous, target)

        released = 0
        if target == OrderStatus.CANCELLED and settings.RESTOCK_ON_CANCEL:
            # Fixed lock order across transactions
            for line in sorted(order.lines, key=lambda l: l.product_id):
                product = await load_product(db, line.product_id)
                await release_stock(db, product, line.quantity, order)
                released += line.quantity

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Order %s: %s → %s by %s%s",
        order.order_number, previous.value, target.value, principal.user_id,
        f" ({released} unit(s) returned to stock)" if released else "",
    )
    return await load_order(db, order_id)


async def list_kitchen_queue(db: AsyncSession, page: int = 1) -> list[Order]:
    """Paid orders not yet ready, oldest first."""
    if page < 1:
        raise InvalidOrderMetadata("page must be positive.", page=page)
    size = settings.KITCHEN_QUEUE_PAGE_SIZE
    result = await db.execute(
        select(Order)
        .where(Order.status.in_(KITCHEN_QUEUE_STATUSES))
        .options(selectinload(Order.lines), selectinload(Order.payment))
        .order_by(Order.created_at.asc(), Order.order_number.asc())
        .offset((page - 1) * size)
        .limit(size)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())
