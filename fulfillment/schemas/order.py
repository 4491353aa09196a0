"""
Fulfillment Service — Order Pydantic Schemas

Cart quantities and fulfillment rules are checked by the reservation
service so they surface as InvalidOrderMetadata, not as 422s.
"""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from fulfillment.models.order import FulfillmentType, OrderStatus
from fulfillment.models.payment import PaymentMethod, PaymentStatus


class CartItemRequest(BaseModel):
    product_id: str = Field(..., examples=["3f1c2b1e-9a1d-4d8e-8d4c-2b7f0a9e6c11"])
    # Any JSON scalar; non-integers are rejected as InvalidOrderMetadata
    quantity: int | float | str = Field(..., examples=[2])


class PlaceOrderRequest(BaseModel):
    items: list[CartItemRequest] = Field(default_factory=list)
    fulfillment_type: str = Field(..., examples=["DINE_IN"])
    table_number: str | None = Field(None, max_length=20)
    notes: str | None = Field(None, max_length=500)


class StatusUpdateRequest(BaseModel):
    status: str = Field(..., examples=["PREPARING"])


class OrderLineResponse(BaseModel):
    model_config = {"from_attributes": True}

    product_id: str
    product_name: str
    unit_price: Decimal
    quantity: int
    subtotal: Decimal


class PaymentSummary(BaseModel):
    model_config = {"from_attributes": True}

    method: PaymentMethod
    status: PaymentStatus
    amount: Decimal
    transaction_id: str | None = None
    paid_at: datetime | None = None


class OrderResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    order_number: str
    user_id: str
    status: OrderStatus
    fulfillment_type: FulfillmentType
    table_number: str | None = None
    notes: str | None = None
    total_amount: Decimal
    created_at: datetime
    updated_at: datetime
    lines: list[OrderLineResponse]
    payment: PaymentSummary | None = None
