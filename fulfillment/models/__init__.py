from fulfillment.models.product import MovementDirection, Product, ProductCategory, StockMovement
from fulfillment.models.order import FulfillmentType, Order, OrderLine, OrderStatus
from fulfillment.models.payment import Payment, PaymentMethod, PaymentStatus

__all__ = [
    "FulfillmentType",
    "MovementDirection",
    "Order",
    "OrderLine",
    "OrderStatus",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "Product",
    "ProductCategory",
    "StockMovement",
]
