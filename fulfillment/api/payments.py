"""
Fulfillment Service — Payments API
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.security import Permission, Principal, get_principal
from fulfillment.db.database import get_db
from fulfillment.schemas.order import OrderResponse
from fulfillment.schemas.payment import PaymentResponse, PaymentResultResponse, SubmitPaymentRequest
from fulfillment.services.payments import submit_payment

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("", response_model=PaymentResultResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(
    payload: SubmitPaymentRequest,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    """Settle an order's payment and confirm it. Paying twice is a 409."""
    principal.require(Permission.PAY_ORDER)
    payment, order = await submit_payment(db, principal, payload.order_id, payload.method)
    return PaymentResultResponse(
        payment=PaymentResponse.model_validate(payment),
        order=OrderResponse.model_validate(order),
    )
