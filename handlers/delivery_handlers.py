# handlers/delivery_handlers.py
import logging
import re

from aiogram import F, Router
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, Message

from fsm.order_states import DeliveryFSM
from keyboards import inline_keyboards
from keyboards.inline_keyboards import CityCallback, WarehouseCallback
from models.exceptions import OrderNotFoundError
from models.order import DeliveryData
from services.delivery_service import NovaPoshtaClient
from services.order_service import OrderService

logger = logging.getLogger(__name__)
router = Router()


# --- Валідація ---
def is_valid_phone(text: str) -> str | None:
    digits_only = re.sub(r'\D', '', text)
    match = re.match(r'^(?:380|0)(\d{9})$', digits_only)
    if match:
        return f"+380{match.group(1)}"
    return None


def is_valid_name(text: str) -> str | None:
    """Одне слово: кирилиця або латиниця, апостроф, дефіс."""
    name = text.strip()
    if not re.fullmatch(r"[А-ЯҐЄІЇа-яґєіїA-Za-z'’\-]{2,40}", name):
        return None
    return name[0].upper() + name[1:]


def _city_entry(city: dict) -> dict:
    """Лишаємо з відповіді НП тільки те, що потрібно формі."""
    return {
        "name": city.get("MainDescription") or city.get("Present", ""),
        "region": city.get("Area") or "-",
        "district": city.get("Region") or "-",
        "ref": city.get("DeliveryCity") or city.get("Ref"),
    }


async def _finish(message: Message, state: FSMContext, order_service: OrderService, pickup_point_label: str) -> None:
    user_data = await state.get_data()
    order_id = user_data.get("order_id")
    delivery = DeliveryData(
        phone=user_data["phone"],
        last_name=user_data["last_name"],
        first_name=user_data["first_name"],
        city=user_data["city"],
        region=user_data["region"],
        district=user_data.get("district"),
        pickup_point_label=pickup_point_label,
    )
    await state.clear()
    try:
        await order_service.submit_delivery_data(order_id, delivery)
    except OrderNotFoundError as e:
        logger.warning(f"Дані доставки не прийнято: {e}")
        await message.answer("❌ Замовлення не знайдено або вже оброблено.")
        return
    logger.info(f"Дані доставки для замовлення {order_id} збережено.")


# --- Крок 1-3: телефон, прізвище, ім'я ---

@router.message(DeliveryFSM.awaiting_phone, F.text)
async def process_phone(message: Message, state: FSMContext):
    phone = is_valid_phone(message.text)
    if not phone:
        await message.answer("❌ Невірний формат. Введіть номер у форматі 0XXXXXXXXX.")
        return
    await state.update_data(phone=phone)
    await message.answer("✍️ Введіть прізвище отримувача:")
    await state.set_state(DeliveryFSM.awaiting_last_name)


@router.message(DeliveryFSM.awaiting_last_name, F.text)
async def process_last_name(message: Message, state: FSMContext):
    last_name = is_valid_name(message.text)
    if not last_name:
        await message.answer("❌ Введіть коректне прізвище.")
        return
    await state.update_data(last_name=last_name)
    await message.answer("✍️ Введіть ім'я отримувача:")
    await state.set_state(DeliveryFSM.awaiting_first_name)


@router.message(DeliveryFSM.awaiting_first_name, F.text)
async def process_first_name(message: Message, state: FSMContext):
    first_name = is_valid_name(message.text)
    if not first_name:
        await message.answer("❌ Введіть коректне ім'я.")
        return
    await state.update_data(first_name=first_name)
    await message.answer("🏙 Введіть назву міста (населеного пункту):")
    await state.set_state(DeliveryFSM.awaiting_city)


# --- Крок 4: місто ---

@router.message(DeliveryFSM.awaiting_city, F.text)
async def process_city(message: Message, state: FSMContext, np_client: NovaPoshtaClient):
    query = message.text.strip()
    if not np_client.api_key:
        # Без API Нової Пошти область і відділення вводяться вручну
        await state.update_data(city=query, manual=True)
        await message.answer("🗺 Введіть область:")
        await state.set_state(DeliveryFSM.awaiting_region)
        return

    cities = await np_client.find_np_city(query)
    if not cities:
        await message.answer("❌ Не знайдено. Спробуйте ще раз.")
        return
    entries = [_city_entry(city) for city in cities[:10]]
    await state.update_data(cities=entries)
    await message.answer("Оберіть населений пункт:", reply_markup=inline_keyboards.get_city_choice_keyboard(cities))
    await state.set_state(DeliveryFSM.awaiting_city_choice)


@router.callback_query(CityCallback.filter(), DeliveryFSM.awaiting_city_choice)
async def cb_city_choice(callback: CallbackQuery, callback_data: CityCallback, state: FSMContext):
    cities = (await state.get_data()).get("cities", [])
    if not 0 <= callback_data.index < len(cities):
        await callback.answer("Оберіть місто зі списку.", show_alert=True)
        return
    city = cities[callback_data.index]
    await state.update_data(city=city["name"], region=city["region"], district=city["district"], city_ref=city["ref"], cities=None)
    await callback.message.edit_text(f"✅ Місто: {city['name']}.\n🏤 Введіть номер або адресу відділення:")
    await state.set_state(DeliveryFSM.awaiting_warehouse)
    await callback.answer()


@router.message(DeliveryFSM.awaiting_region, F.text)
async def process_region(message: Message, state: FSMContext):
    region = message.text.strip()
    if len(region) < 2:
        await message.answer("❌ Введіть назву області.")
        return
    await state.update_data(region=region)
    await message.answer("🏤 Введіть номер або адресу відділення Нової Пошти:")
    await state.set_state(DeliveryFSM.awaiting_warehouse)


# --- Крок 5: відділення ---

@router.message(DeliveryFSM.awaiting_warehouse, F.text)
async def process_warehouse(message: Message, state: FSMContext, order_service: OrderService, np_client: NovaPoshtaClient):
    query = message.text.strip()
    user_data = await state.get_data()
    city_ref = user_data.get("city_ref")
    if user_data.get("manual") or not city_ref:
        await _finish(message, state, order_service, query)
        return

    warehouses = await np_client.find_np_warehouses(city_ref, query)
    if not warehouses:
        await message.answer("❌ Не знайдено відділення. Спробуйте ще раз.")
        return
    if len(warehouses) == 1:
        await _finish(message, state, order_service, warehouses[0].get("Description", query))
        return
    await state.update_data(warehouses=[w.get("Description", "") for w in warehouses[:20]])
    await message.answer("Оберіть відділення:", reply_markup=inline_keyboards.get_warehouse_choice_keyboard(warehouses))
    await state.set_state(DeliveryFSM.awaiting_warehouse_choice)


@router.callback_query(WarehouseCallback.filter(), DeliveryFSM.awaiting_warehouse_choice)
async def cb_warehouse_choice(callback: CallbackQuery, callback_data: WarehouseCallback, state: FSMContext, order_service: OrderService):
    warehouses = (await state.get_data()).get("warehouses", [])
    if not 0 <= callback_data.index < len(warehouses):
        await callback.answer("Оберіть відділення зі списку.", show_alert=True)
        return
    label = warehouses[callback_data.index]
    await callback.message.edit_text(f"✅ Відділення: {label}")
    await _finish(callback.message, state, order_service, label)
    await callback.answer()
