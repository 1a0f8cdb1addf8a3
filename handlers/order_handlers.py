# handlers/order_handlers.py
import logging
from typing import Awaitable, Callable, Dict

from aiogram import Router
from aiogram.exceptions import TelegramBadRequest
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery

from fsm.order_states import DeliveryFSM
from keyboards.inline_keyboards import OrderCallback
from models.exceptions import OrderNotFoundError, UpstreamUnavailableError
from models.notification import OrderAction
from models.order import AdminDecision, PaymentMethod
from services.order_service import OrderService
from services.payment_service import PaymentVerifier

logger = logging.getLogger(__name__)
router = Router()

NOT_FOUND_TEXT = "Замовлення не знайдено"
ADMIN_ACTIONS = {OrderAction.available, OrderAction.unavailable}


async def _drop_keyboard(callback: CallbackQuery) -> None:
    """Прибирає кнопки з повідомлення, щоб дію не натиснули вдруге."""
    if callback.message is None:
        return
    try:
        await callback.message.edit_reply_markup(reply_markup=None)
    except TelegramBadRequest as e:
        logger.warning(f"Не вдалося прибрати клавіатуру: {e}")


# --- Обробники окремих дій ---

async def _on_admin_decision(callback: CallbackQuery, callback_data: OrderCallback, order_service: OrderService, **_) -> None:
    decision = AdminDecision.available if callback_data.action == OrderAction.available else AdminDecision.unavailable
    if not await order_service.admin_decision(callback_data.order_id, decision):
        await callback.answer(NOT_FOUND_TEXT)
        return
    await _drop_keyboard(callback)
    await callback.answer("✅ Рішення збережено")


async def _on_fill_form(callback: CallbackQuery, callback_data: OrderCallback, order_service: OrderService, state: FSMContext, **_) -> None:
    order = await order_service.get_order(callback_data.order_id)
    if order is None or order.is_terminal:
        await callback.answer(NOT_FOUND_TEXT)
        return
    await state.clear()
    await state.update_data(order_id=order.order_id)
    await state.set_state(DeliveryFSM.awaiting_phone)
    await callback.message.answer("📞 Введіть номер телефону отримувача (напр., 0671234567):")
    await callback.answer()


async def _on_payment(callback: CallbackQuery, callback_data: OrderCallback, order_service: OrderService, **_) -> None:
    method = PaymentMethod.cash_on_delivery if callback_data.action == OrderAction.pay_cash else PaymentMethod.ton
    try:
        await order_service.choose_payment(callback_data.order_id, method)
    except OrderNotFoundError:
        await callback.answer(NOT_FOUND_TEXT)
        return
    except UpstreamUnavailableError as e:
        logger.error(f"Оплата TON недоступна для {callback_data.order_id}: {e}")
        await callback.answer("Оплата в TON тимчасово недоступна. Оберіть інший спосіб.", show_alert=True)
        return
    await _drop_keyboard(callback)
    await callback.answer()


async def _on_ton_check(callback: CallbackQuery, callback_data: OrderCallback, payment_verifier: PaymentVerifier, **_) -> None:
    if await payment_verifier.check_order(callback_data.order_id):
        await _drop_keyboard(callback)
        await callback.answer("✅ Оплату отримано!", show_alert=True)
    else:
        await callback.answer("⏳ Оплата ще не надійшла. Спробуйте за хвилину.", show_alert=True)


async def _on_ton_cancel(callback: CallbackQuery, callback_data: OrderCallback, order_service: OrderService, **_) -> None:
    if not await order_service.cancel_ton_payment(callback_data.order_id):
        await callback.answer(NOT_FOUND_TEXT)
        return
    await _drop_keyboard(callback)
    await callback.answer()


ACTION_HANDLERS: Dict[OrderAction, Callable[..., Awaitable[None]]] = {
    OrderAction.available: _on_admin_decision,
    OrderAction.unavailable: _on_admin_decision,
    OrderAction.fill_form: _on_fill_form,
    OrderAction.pay_cash: _on_payment,
    OrderAction.pay_ton: _on_payment,
    OrderAction.ton_check: _on_ton_check,
    OrderAction.ton_cancel: _on_ton_cancel,
}


@router.callback_query(OrderCallback.filter())
async def cb_order_action(
    callback: CallbackQuery,
    callback_data: OrderCallback,
    state: FSMContext,
    order_service: OrderService,
    payment_verifier: PaymentVerifier,
):
    """Єдина точка входу для всіх кнопок замовлення."""
    action = callback_data.action
    logger.info(f"Дія {action.value} для замовлення {callback_data.order_id} від {callback.from_user.id}")

    if action in ADMIN_ACTIONS:
        if callback.from_user.id != order_service.admin_id:
            await callback.answer("⛔️ Ця дія доступна лише адміністратору.", show_alert=True)
            return
    else:
        order = await order_service.get_order(callback_data.order_id)
        if order is None or order.customer.id != callback.from_user.id:
            await callback.answer(NOT_FOUND_TEXT)
            return

    handler = ACTION_HANDLERS[action]
    await handler(
        callback,
        callback_data,
        order_service=order_service,
        payment_verifier=payment_verifier,
        state=state,
    )
