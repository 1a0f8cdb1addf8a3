# models/notification.py
import enum
from typing import List, Optional

from pydantic import BaseModel


class OrderAction(str, enum.Enum):
    """Дії кнопок, які приходять назад як callback."""
    available = "available"        # Адмін: номер в наявності
    unavailable = "unavailable"    # Адмін: номера немає
    fill_form = "fill_form"        # Клієнт: заповнити дані в чаті
    pay_cash = "pay_cash"          # Клієнт: оплата при отриманні
    pay_ton = "pay_ton"            # Клієнт: оплата в TON
    ton_check = "ton_check"        # Клієнт: перевірити оплату
    ton_cancel = "ton_cancel"      # Клієнт: скасувати оплату в TON


class Button(BaseModel):
    text: str
    action: Optional[OrderAction] = None
    order_id: Optional[str] = None
    url: Optional[str] = None


class OutgoingMessage(BaseModel):
    """Повідомлення, яке треба надіслати після переходу стану."""
    chat_id: int
    text: str
    buttons: List[List[Button]] = []

    @property
    def button_count(self) -> int:
        return sum(len(row) for row in self.buttons)
