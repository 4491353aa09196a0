"""
Fulfillment Service — Payment Pydantic Schemas
"""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from fulfillment.models.payment import PaymentMethod, PaymentStatus
from fulfillment.schemas.order import OrderResponse


class SubmitPaymentRequest(BaseModel):
    order_id: str
    # Free text; unknown methods are rejected as InvalidPaymentMethod
    method: str = Field(..., examples=["CASH", "QRIS", "EDC"])


class PaymentResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    order_id: str
    method: PaymentMethod
    amount: Decimal
    status: PaymentStatus
    transaction_id: str | None = None
    paid_at: datetime | None = None


class PaymentResultResponse(BaseModel):
    payment: PaymentResponse
    order: OrderResponse
