# fsm/order_states.py
from aiogram.fsm.state import State, StatesGroup


class DeliveryFSM(StatesGroup):
    """
    Покрокова форма даних доставки в чаті.
    Кожне поле вводиться окремим повідомленням і перевіряється одразу.
    """
    awaiting_phone = State()          # Телефон отримувача
    awaiting_last_name = State()      # Прізвище
    awaiting_first_name = State()     # Ім'я
    awaiting_city = State()           # Пошук міста в Новій Пошті
    awaiting_city_choice = State()    # Вибір міста зі списку
    awaiting_region = State()         # Область вручну (якщо API НП недоступне)
    awaiting_warehouse = State()      # Пошук відділення (номер або адреса)
    awaiting_warehouse_choice = State()  # Вибір відділення зі списку
