# services/notification_service.py
import asyncio
import logging
from abc import ABC, abstractmethod

from aiogram import Bot

from keyboards.inline_keyboards import build_order_keyboard
from models.exceptions import NotificationDeliveryError
from models.notification import OutgoingMessage

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Месенджер: надсилає повідомлення клієнту або адміну."""

    @abstractmethod
    async def send(self, message: OutgoingMessage) -> int:
        """Повертає ID надісланого повідомлення."""


class TelegramNotifier(Notifier):

    def __init__(self, bot: Bot, timeout_seconds: float = 10.0):
        self.bot = bot
        self.timeout_seconds = timeout_seconds

    async def send(self, message: OutgoingMessage) -> int:
        try:
            sent = await asyncio.wait_for(
                self.bot.send_message(
                    chat_id=message.chat_id,
                    text=message.text,
                    reply_markup=build_order_keyboard(message.buttons),
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise NotificationDeliveryError(f"Таймаут надсилання в чат {message.chat_id}") from e
        except Exception as e:
            raise NotificationDeliveryError(f"Помилка надсилання в чат {message.chat_id}: {e}") from e
        logger.info(f"Повідомлення {sent.message_id} надіслано в чат {message.chat_id}.")
        return sent.message_id
