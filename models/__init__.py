# models/__init__.py
from .order import (
    Order, OrderLine, OrderState, CustomerRef, DeliveryData, StateChange,
    PaymentMethod, AdminDecision, TonCancelReason, PaymentInstructions, TERMINAL_STATES, ALLOWED_TRANSITIONS,
)
from .phone import Phone
from .notification import OrderAction, Button, OutgoingMessage
from .exceptions import (
    OrderFlowError, InvalidOrderError, OrderNotFoundError, DuplicateOrderError,
    UpstreamUnavailableError, NotificationDeliveryError,
)

__all__ = [
    "Order", "OrderLine", "OrderState", "CustomerRef", "DeliveryData", "StateChange",
    "PaymentMethod", "AdminDecision", "TonCancelReason", "PaymentInstructions", "TERMINAL_STATES", "ALLOWED_TRANSITIONS",
    "Phone",
    "OrderAction", "Button", "OutgoingMessage",
    "OrderFlowError", "InvalidOrderError", "OrderNotFoundError", "DuplicateOrderError",
    "UpstreamUnavailableError", "NotificationDeliveryError",
]
