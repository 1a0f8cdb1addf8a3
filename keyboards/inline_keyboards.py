# keyboards/inline_keyboards.py
from typing import Any, Dict, List

from aiogram.filters.callback_data import CallbackData
from aiogram.types import InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from models.notification import Button, OrderAction


# --- Фабрики CallbackData ---
class OrderCallback(CallbackData, prefix="ord"):
    """Дія над замовленням. Розбирається один раз на вході в хендлер."""
    action: OrderAction
    order_id: str


class CityCallback(CallbackData, prefix="npcity"):
    index: int


class WarehouseCallback(CallbackData, prefix="npwh"):
    index: int


# --- Клавіатури ---

def build_order_keyboard(rows: List[List[Button]]) -> InlineKeyboardMarkup | None:
    """Перетворює кнопки машини станів на inline-клавіатуру Telegram."""
    if not rows:
        return None
    builder = InlineKeyboardBuilder()
    for row in rows:
        for button in row:
            if button.url:
                builder.button(text=button.text, url=button.url)
            else:
                builder.button(
                    text=button.text,
                    callback_data=OrderCallback(action=button.action, order_id=button.order_id),
                )
    builder.adjust(*[len(row) for row in rows])
    return builder.as_markup()


def get_city_choice_keyboard(cities: List[Dict[str, Any]]) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for i, city in enumerate(cities[:10]):
        builder.button(text=city.get("Present") or city.get("MainDescription", "?"), callback_data=CityCallback(index=i).pack())
    builder.adjust(1)
    return builder.as_markup()


def get_warehouse_choice_keyboard(warehouses: List[Dict[str, Any]]) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for i, warehouse in enumerate(warehouses[:20]):
        builder.button(text=warehouse.get("Description", "?")[:60], callback_data=WarehouseCallback(index=i).pack())
    builder.adjust(1)
    return builder.as_markup()
