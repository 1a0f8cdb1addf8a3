# api_models.py
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.phone import Phone
from models.order import (
    AdminDecision, CustomerRef, DeliveryData, OrderLine, OrderState,
    PaymentMethod, TonCancelReason,
)

# --- Запити ---


class CreateOrderRequest(BaseModel):
    """Замовлення з Mini App: кошик номерів і хто замовляє."""
    lines: List[OrderLine]
    customer: CustomerRef


class AdminDecisionRequest(BaseModel):
    decision: AdminDecision


class DeliveryDataRequest(BaseModel):
    delivery: DeliveryData


class ChoosePaymentRequest(BaseModel):
    method: PaymentMethod


class ConfirmTonPaymentRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    tx_ref: str = Field(..., min_length=1)
    tx_time: datetime


class CancelTonPaymentRequest(BaseModel):
    reason: TonCancelReason = TonCancelReason.customer


# --- Відповіді ---


class Ack(BaseModel):
    success: bool = True
    message: Optional[str] = None


class OrderSummary(BaseModel):
    """Короткий опис замовлення для списків."""
    model_config = ConfigDict(from_attributes=True)
    order_id: str
    state: OrderState
    total_uah: int
    discounted_uah: int
    total_ton: Decimal
    discount_percent: int
    payment_method: Optional[PaymentMethod] = None
    ton_deadline: Optional[datetime] = None
    created_at: datetime


class OrderDetails(OrderSummary):
    """Повний знімок замовлення: за ним клієнт звіряє стан, навіть якщо повідомлення загубилося."""
    lines: List[OrderLine]
    customer: CustomerRef
    ton_rate: Decimal
    delivery: Optional[DeliveryData] = None
    payment_chosen_at: Optional[datetime] = None
    ton_tx_ref: Optional[str] = None
    ton_paid_amount: Optional[Decimal] = None


class OrderResponse(BaseModel):
    success: bool = True
    data: OrderDetails


class OrderListResponse(BaseModel):
    success: bool = True
    count: int
    data: List[OrderSummary]


class PaymentResponse(BaseModel):
    """Для TON містить реквізити, для оплати при отриманні - лише новий стан."""
    success: bool = True
    state: OrderState
    wallet_address: Optional[str] = None
    amount_ton: Optional[Decimal] = None
    comment: Optional[str] = None
    deadline: Optional[datetime] = None


class PhoneListResponse(BaseModel):
    success: bool = True
    count: int
    data: List[Phone]
