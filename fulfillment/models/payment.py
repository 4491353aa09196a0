"""
Fulfillment Service — Payment model

A payment row is the one record the service updates in place, and only
while it is unpaid. Once PAID it is frozen: ``settle`` refuses to touch it.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Enum, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.core.errors import AlreadyPaid
from fulfillment.core.identifiers import new_id, utcnow
from fulfillment.db.database import Base

if TYPE_CHECKING:
    from fulfillment.models.order import Order


class PaymentMethod(str, PyEnum):
    CASH = "CASH"
    QRIS = "QRIS"
    EDC = "EDC"

    @property
    def needs_transaction_id(self) -> bool:
        return self is not PaymentMethod.CASH


class PaymentStatus(str, PyEnum):
    PENDING = "PENDING"
    PAID = "PAID"


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), unique=True, nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(Enum(PaymentMethod, name="payment_method"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status"), default=PaymentStatus.PENDING, nullable=False
    )
    transaction_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    order: Mapped["Order"] = relationship(back_populates="payment")

    @property
    def is_paid(self) -> bool:
        return self.status == PaymentStatus.PAID

    def settle(self, method: PaymentMethod, amount: Decimal, transaction_id: str | None, paid_at: datetime) -> None:
        """Move an unpaid record to PAID. A paid record is never overwritten."""
        if self.is_paid:
            raise AlreadyPaid(self.order_id)
        self.method = method
        self.amount = amount
        self.transaction_id = transaction_id
        self.status = PaymentStatus.PAID
        self.paid_at = paid_at

    def __repr__(self) -> str:
        return f"<Payment order={self.order_id} {self.method.value} {self.status.value}>"
