# handlers/user_commands.py
from aiogram import Router
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.fsm.context import FSMContext
from aiogram.types import Message

from services.order_service import OrderService

router = Router()


# --- Обробник команди /start ---
@router.message(CommandStart())
async def cmd_start(message: Message, state: FSMContext):
    await state.clear()
    await message.answer(
        "🛒 Вітаємо в магазині красивих номерів!\n\n"
        "Для замовлення номера скористайтеся нашим каталогом у Mini App."
    )


# --- /status <order_id>: повторно показує актуальний крок замовлення ---
@router.message(Command("status"))
async def cmd_status(message: Message, command: CommandObject, order_service: OrderService):
    order_id = (command.args or "").strip()
    if not order_id:
        await message.answer("Вкажіть номер замовлення: /status <номер>")
        return
    order = await order_service.get_order(order_id)
    if order is None or (order.customer.id != message.from_user.id and message.from_user.id != order_service.admin_id):
        await message.answer("❌ Замовлення не знайдено.")
        return
    await order_service.resend_current_prompt(order_id)


# --- Скасування форми доставки ---
@router.message(Command("cancel"))
async def cmd_cancel(message: Message, state: FSMContext):
    if await state.get_state() is None:
        await message.answer("Немає активної дії.")
        return
    await state.clear()
    await message.answer("Введення даних скасовано. Натисніть «📝 Заповнити дані», щоб почати знову.")
