"""
Fulfillment Service — Domain errors and their HTTP rendering

Every business-rule rejection raised by the service layer is a
FulfillmentError subclass with a stable ``kind`` and a human-readable
``detail`` naming the specific cause. Routes never translate these by hand;
``register_exception_handlers`` renders them as::

    {"error": "<kind>", "detail": "<reason>", ...context}
"""
import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class FulfillmentError(Exception):
    kind: str = "FulfillmentError"
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str, **context: Any):
        super().__init__(detail)
        self.detail = detail
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "detail": self.detail, **self.context}


# ── Validation errors ─────────────────────────────────────────────────────────

class InvalidOrderMetadata(FulfillmentError):
    kind = "InvalidOrderMetadata"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidPaymentMethod(FulfillmentError):
    kind = "InvalidPaymentMethod"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidRestock(FulfillmentError):
    kind = "InvalidRestock"
    status_code = status.HTTP_400_BAD_REQUEST


# ── Conflict errors ───────────────────────────────────────────────────────────

class InsufficientStock(FulfillmentError):
    kind = "InsufficientStock"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, product_id: str, product_name: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for '{product_name}' ({product_id}): "
            f"requested={requested}, available={available}",
            product_id=product_id,
            requested=requested,
            available=available,
        )
        self.product_id = product_id


class AlreadyPaid(FulfillmentError):
    kind = "AlreadyPaid"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} has already been paid.", order_id=order_id)


class InvalidStatusTransition(FulfillmentError):
    kind = "InvalidStatusTransition"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, order_id: str, current: str, requested: str, reason: str | None = None):
        current = getattr(current, "value", current)
        requested = getattr(requested, "value", requested)
        detail = f"Cannot move order {order_id} from {current} to {requested}."
        if reason:
            detail = f"{detail} {reason}"
        super().__init__(detail, order_id=order_id, current_status=current, requested_status=requested)


class ConcurrencyConflict(FulfillmentError):
    kind = "ConcurrencyConflict"
    status_code = status.HTTP_409_CONFLICT


# ── Not-found / authorization errors ──────────────────────────────────────────

class ProductNotFound(FulfillmentError):
    kind = "ProductNotFound"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, product_id: str, reason: str = "not found"):
        super().__init__(f"Product {product_id} {reason}.", product_id=product_id)
        self.product_id = product_id


class OrderNotFound(FulfillmentError):
    kind = "OrderNotFound"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found.", order_id=order_id)


class Forbidden(FulfillmentError):
    kind = "Forbidden"
    status_code = status.HTTP_403_FORBIDDEN


# ── Handlers ──────────────────────────────────────────────────────────────────

async def fulfillment_error_handler(request: Request, exc: FulfillmentError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Stack traces are logged, never returned
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "InternalError", "detail": "An internal error occurred. Please try again later."},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FulfillmentError, fulfillment_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
