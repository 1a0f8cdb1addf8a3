# handlers/api_handlers.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from api_models import (
    Ack, AdminDecisionRequest, CancelTonPaymentRequest, ChoosePaymentRequest,
    ConfirmTonPaymentRequest, CreateOrderRequest, DeliveryDataRequest,
    OrderDetails, OrderListResponse, OrderResponse, OrderSummary, PaymentResponse,
)
from handlers.dependencies import get_order_service, get_payment_verifier, require_admin
from models.order import OrderState
from services.order_service import OrderService
from services.payment_service import PaymentVerifier

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/orders", tags=["Orders"])

NOT_FOUND_TEXT = "Замовлення не знайдено"


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(payload: CreateOrderRequest, order_service: OrderService = Depends(get_order_service)):
    """Нове замовлення з Mini App. Клієнт і адмін отримують повідомлення в Telegram."""
    order = await order_service.submit_order(payload.lines, payload.customer)
    return OrderResponse(data=OrderDetails.model_validate(order))


@router.get("", response_model=OrderListResponse, dependencies=[Depends(require_admin)])
async def list_orders(state: Optional[OrderState] = None, order_service: OrderService = Depends(get_order_service)):
    orders = await order_service.list_orders(state)
    return OrderListResponse(count=len(orders), data=[OrderSummary.model_validate(o) for o in orders])


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    order_service: OrderService = Depends(get_order_service),
    verifier: PaymentVerifier = Depends(get_payment_verifier),
):
    """Статус замовлення. Поки очікується TON-оплата, заодно перевіряє блокчейн."""
    order = await order_service.get_order(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail=NOT_FOUND_TEXT)
    if order.state == OrderState.awaiting_ton_payment and await verifier.check_order(order_id):
        order = await order_service.get_order(order_id)
    return OrderResponse(data=OrderDetails.model_validate(order))


@router.post("/{order_id}/decision", response_model=Ack, dependencies=[Depends(require_admin)])
async def admin_decision(order_id: str, payload: AdminDecisionRequest, order_service: OrderService = Depends(get_order_service)):
    if not await order_service.admin_decision(order_id, payload.decision):
        return Ack(success=False, message=NOT_FOUND_TEXT)
    return Ack()


@router.post("/{order_id}/delivery", response_model=OrderResponse)
async def submit_delivery(order_id: str, payload: DeliveryDataRequest, order_service: OrderService = Depends(get_order_service)):
    order = await order_service.submit_delivery_data(order_id, payload.delivery)
    return OrderResponse(data=OrderDetails.model_validate(order))


@router.post("/{order_id}/payment", response_model=PaymentResponse)
async def choose_payment(order_id: str, payload: ChoosePaymentRequest, order_service: OrderService = Depends(get_order_service)):
    instructions = await order_service.choose_payment(order_id, payload.method)
    order = await order_service.get_order(order_id)
    if instructions is None:
        return PaymentResponse(state=order.state)
    return PaymentResponse(
        state=order.state,
        wallet_address=instructions.wallet_address,
        amount_ton=instructions.amount_ton,
        comment=instructions.comment,
        deadline=instructions.deadline,
    )


@router.post("/{order_id}/ton/confirm", response_model=Ack, dependencies=[Depends(require_admin)])
async def confirm_ton_payment(order_id: str, payload: ConfirmTonPaymentRequest, order_service: OrderService = Depends(get_order_service)):
    """Ручне підтвердження TON-переказу (наприклад, якщо опитування недоступне)."""
    confirmed = await order_service.confirm_ton_payment(order_id, payload.amount, payload.tx_ref, payload.tx_time)
    if not confirmed:
        return Ack(success=False, message="Оплату не зараховано")
    return Ack()


@router.post("/{order_id}/ton/cancel", response_model=Ack)
async def cancel_ton_payment(
    order_id: str,
    payload: Optional[CancelTonPaymentRequest] = None,
    order_service: OrderService = Depends(get_order_service),
):
    reason = payload.reason if payload else CancelTonPaymentRequest().reason
    if not await order_service.cancel_ton_payment(order_id, reason):
        return Ack(success=False, message=NOT_FOUND_TEXT)
    return Ack()


@router.post("/{order_id}/ton/check", response_model=Ack)
async def check_ton_payment(order_id: str, verifier: PaymentVerifier = Depends(get_payment_verifier)):
    if await verifier.check_order(order_id):
        return Ack(message="Оплату отримано")
    return Ack(success=False, message="Оплата ще не надійшла")
