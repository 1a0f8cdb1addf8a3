# models/order.py
import enum
from datetime import datetime
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Перелічувані типи (Enum) ---

class OrderState(str, enum.Enum):
    created = "created"                                  # Щойно створене
    awaiting_admin_decision = "awaiting_admin_decision"  # Чекає на перевірку наявності адміном
    awaiting_delivery_data = "awaiting_delivery_data"    # Чекає на дані для відправки
    awaiting_payment_choice = "awaiting_payment_choice"  # Чекає на вибір способу оплати
    awaiting_ton_payment = "awaiting_ton_payment"        # Чекає на оплату в TON
    confirmed_cash = "confirmed_cash"                    # Оплата при отриманні (фінал)
    paid = "paid"                                        # Оплачено в TON (фінал)
    rejected = "rejected"                                # Номера немає (фінал)


class PaymentMethod(str, enum.Enum):
    cash_on_delivery = "cash_on_delivery"
    ton = "ton"


class AdminDecision(str, enum.Enum):
    available = "available"
    unavailable = "unavailable"


class TonCancelReason(str, enum.Enum):
    customer = "customer"  # Клієнт сам скасував оплату
    timeout = "timeout"    # Вийшов час очікування оплати


TERMINAL_STATES: FrozenSet[OrderState] = frozenset({
    OrderState.rejected,
    OrderState.confirmed_cash,
    OrderState.paid,
})

# Граф переходів. Єдиний шлях назад - повернення з TON-оплати до вибору оплати.
ALLOWED_TRANSITIONS: Dict[OrderState, FrozenSet[OrderState]] = {
    OrderState.created: frozenset({OrderState.awaiting_admin_decision}),
    OrderState.awaiting_admin_decision: frozenset({
        OrderState.awaiting_delivery_data,
        OrderState.rejected,
    }),
    OrderState.awaiting_delivery_data: frozenset({OrderState.awaiting_payment_choice}),
    OrderState.awaiting_payment_choice: frozenset({
        OrderState.awaiting_payment_choice,  # повторне надсилання даних доставки
        OrderState.confirmed_cash,
        OrderState.awaiting_ton_payment,
    }),
    OrderState.awaiting_ton_payment: frozenset({
        OrderState.paid,
        OrderState.awaiting_payment_choice,
    }),
    OrderState.confirmed_cash: frozenset(),
    OrderState.paid: frozenset(),
    OrderState.rejected: frozenset(),
}


def can_transition(current: OrderState, target: OrderState) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


# --- Моделі ---

class OrderLine(BaseModel):
    """Знімок ціни номера на момент замовлення."""
    phone_number: str = Field(..., min_length=1)
    price_units: int


class CustomerRef(BaseModel):
    id: int  # Telegram chat id клієнта
    username: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def label(self) -> str:
        return f"@{self.username}" if self.username else (self.display_name or "невідомий")


class DeliveryData(BaseModel):
    """Дані для відправки Новою поштою."""
    model_config = ConfigDict(str_strip_whitespace=True)

    phone: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    first_name: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    region: str = Field(..., min_length=1)
    district: str = "-"
    pickup_point_label: str = Field(..., min_length=1)

    @field_validator("district", mode="before")
    @classmethod
    def _default_district(cls, value):
        if value is None or not str(value).strip():
            return "-"
        return value

    def as_lines(self) -> List[str]:
        return [
            f"Телефон: {self.phone}",
            f"Прізвище: {self.last_name}",
            f"Ім'я: {self.first_name}",
            f"Місто: {self.city}",
            f"Область: {self.region}",
            f"Район: {self.district}",
            f"Склад НП: {self.pickup_point_label}",
        ]


class StateChange(BaseModel):
    from_state: OrderState
    to_state: OrderState
    at: datetime
    reason: str


class Order(BaseModel):
    order_id: str
    lines: List[OrderLine] = Field(..., min_length=1)
    customer: CustomerRef
    created_at: datetime

    # Ціни фіксуються при створенні і більше не перераховуються
    total_uah: int
    ton_rate: Decimal
    discount_percent: int
    discounted_uah: int
    total_ton: Decimal

    state: OrderState = OrderState.created
    delivery: Optional[DeliveryData] = None
    payment_method: Optional[PaymentMethod] = None

    # Поточний намір оплати в TON (очищується при скасуванні)
    payment_chosen_at: Optional[datetime] = None
    ton_deadline: Optional[datetime] = None

    ton_tx_ref: Optional[str] = None
    ton_paid_amount: Optional[Decimal] = None

    history: List[StateChange] = Field(default_factory=list)
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def phone_numbers(self) -> List[str]:
        return [line.phone_number for line in self.lines]

    def move_to(self, target: OrderState, at: datetime, reason: str) -> None:
        """Переводить замовлення в новий стан, перевіряючи граф переходів."""
        if not can_transition(self.state, target):
            raise ValueError(f"Перехід '{self.state.value} -> {target.value}' заборонено")
        self.history.append(StateChange(from_state=self.state, to_state=target, at=at, reason=reason))
        self.state = target


class PaymentInstructions(BaseModel):
    """Реквізити для оплати в TON, які бачить клієнт."""
    order_id: str
    wallet_address: str
    amount_ton: Decimal
    comment: str
    deadline: datetime
