"""
Fulfillment Service — Payment submission

Settling a payment and confirming the order are one transaction: the
payment row goes PAID and the order moves PENDING → CONFIRMED through a
compare-and-swap on its status. A second submission for the same order
is answered with AlreadyPaid and writes nothing.
"""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.errors import AlreadyPaid, Forbidden, InvalidPaymentMethod, InvalidStatusTransition
from fulfillment.core.identifiers import generate_transaction_id, utcnow
from fulfillment.core.optimistic_lock import StaleDataError, with_optimistic_retry
from fulfillment.core.security import Principal
from fulfillment.models.order import Order, OrderStatus
from fulfillment.models.payment import Payment, PaymentMethod, PaymentStatus
from fulfillment.services.orders import load_order
from fulfillment.services.workflow import compare_and_set_status

logger = logging.getLogger(__name__)


def parse_method(method: PaymentMethod | str) -> PaymentMethod:
    try:
        return PaymentMethod(str(method).strip().upper())
    except ValueError:
        raise InvalidPaymentMethod(
            f"Unsupported payment method {method!r}; expected one of "
            f"{', '.join(m.value for m in PaymentMethod)}.",
            method=str(method),
        )


@with_optimistic_retry()
async def submit_payment(
    db: AsyncSession,
    principal: Principal,
    order_id: str,
    method: PaymentMethod | str,
) -> tuple[Payment, Order]:
    try:
        order = await load_order(db, order_id)
        if order.user_id != principal.user_id:
            raise Forbidden(f"Order {order_id} belongs to another user.", order_id=order_id)

        payment = order.payment
        if payment is not None and payment.is_paid:
            raise AlreadyPaid(order_id)

        chosen = parse_method(method)
        if order.status != OrderStatus.PENDING:
            raise InvalidStatusTransition(
                order_id, order.status, OrderStatus.CONFIRMED,
                reason="Only PENDING orders can be paid.",
            )

        if payment is None:
            payment = Payment(
                order_id=order.id,
                method=chosen,
                amount=order.total_amount,
                status=PaymentStatus.PENDING,
            )
            db.add(payment)

        payment.settle(
            method=chosen,
            amount=order.total_amount,
            transaction_id=generate_transaction_id() if chosen.needs_transaction_id else None,
            paid_at=utcnow(),
        )
        await compare_and_set_status(db, order, OrderStatus.PENDING, OrderStatus.CONFIRMED)

        try:
            await db.commit()
        except IntegrityError as exc:
            # Unique order_id: a concurrent submission inserted first.
            # The replay re-reads and answers AlreadyPaid.
            await db.rollback()
            raise StaleDataError(f"Concurrent payment for order {order_id}.") from exc
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Payment for order %s settled via %s (txn=%s)",
        order.order_number, chosen.value, payment.transaction_id,
    )
    return payment, await load_order(db, order_id)
