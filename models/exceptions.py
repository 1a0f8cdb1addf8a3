# models/exceptions.py
"""
Помилки процесу обробки замовлень.

Усі помилки наслідуються від OrderFlowError, щоб HTTP-шар і хендлери бота
могли перехоплювати їх однаково.
"""


class OrderFlowError(Exception):
    """Базовий клас для всіх помилок замовлень."""


class InvalidOrderError(OrderFlowError):
    """Порожній або некоректний список позицій. Замовлення не створюється."""


class OrderNotFoundError(OrderFlowError):
    """Замовлення не існує або знаходиться в іншому стані."""

    def __init__(self, order_id: str, reason: str = "not found"):
        self.order_id = order_id
        self.reason = reason
        super().__init__(f"Order {order_id}: {reason}")


class DuplicateOrderError(OrderFlowError):
    """Колізія ID замовлення в сховищі."""


class UpstreamUnavailableError(OrderFlowError):
    """Зовнішнє джерело (таблиця, курс, адреси, блокчейн) недоступне."""


class NotificationDeliveryError(OrderFlowError):
    """Не вдалося доставити повідомлення через месенджер."""
