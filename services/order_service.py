# services/order_service.py
"""
Машина станів замовлення.

Кожна операція: бере замок замовлення, читає його зі сховища, перевіряє
поточний стан, записує новий стан і тільки після звільнення замка надсилає
повідомлення. Помилка доставки повідомлення не відкочує перехід.
"""
import asyncio
import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional, Protocol

from database.order_store import OrderStore
from models.exceptions import (
    DuplicateOrderError, InvalidOrderError, NotificationDeliveryError,
    OrderNotFoundError, UpstreamUnavailableError,
)
from models.notification import Button, OrderAction, OutgoingMessage
from models.order import (
    AdminDecision, CustomerRef, DeliveryData, Order, OrderLine, OrderState,
    PaymentInstructions, PaymentMethod, TonCancelReason,
)
from services import order_formatter

logger = logging.getLogger(__name__)

TON_QUANT = Decimal("0.01")


class RateSource(Protocol):
    async def get_rate(self) -> Decimal: ...


class MessageSender(Protocol):
    async def send(self, message: OutgoingMessage): ...


class TimeoutRegistry(Protocol):
    def schedule(self, order_id: str, run_at: datetime) -> None: ...
    def cancel(self, order_id: str) -> None: ...


def generate_order_id() -> str:
    """64 біти випадковості - колізії практично неможливі."""
    return secrets.token_hex(8)


def calculate_ton_quote(total_uah: int, rate: Decimal, discount_percent: int) -> tuple[int, Decimal]:
    """Повертає (сума зі знижкою в грн, сума в TON)."""
    discounted = Decimal(total_uah) * (Decimal(100) - Decimal(discount_percent)) / Decimal(100)
    discounted_uah = int(discounted.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    total_ton = (discounted / rate).quantize(TON_QUANT, rounding=ROUND_HALF_UP)
    return discounted_uah, total_ton


class _OrderLock:
    """Замок замовлення з лічильником користувачів. Видаляється, коли нікому не потрібен."""

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class OrderService:

    def __init__(
        self,
        store: OrderStore,
        notifier: MessageSender,
        rates: RateSource,
        timeouts: TimeoutRegistry,
        admin_id: int,
        *,
        ton_wallet_address: Optional[str] = None,
        discount_percent: int = 5,
        ton_timeout: timedelta = timedelta(minutes=10),
        tolerance_percent: Decimal = Decimal("2"),
        clock_skew: timedelta = timedelta(seconds=60),
        delivery_form_url: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Callable[[], str] = generate_order_id,
    ):
        self.store = store
        self.notifier = notifier
        self.rates = rates
        self.timeouts = timeouts
        self.admin_id = admin_id
        self.ton_wallet_address = ton_wallet_address
        self.discount_percent = discount_percent
        self.ton_timeout = ton_timeout
        self.tolerance_percent = Decimal(str(tolerance_percent))
        self.clock_skew = clock_skew
        self.delivery_form_url = delivery_form_url
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory
        self._locks: Dict[str, _OrderLock] = {}

    def now(self) -> datetime:
        return self._clock()

    @asynccontextmanager
    async def _order_lock(self, order_id: str) -> AsyncIterator[None]:
        entry = self._locks.get(order_id)
        if entry is None:
            entry = self._locks[order_id] = _OrderLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[order_id]

    # --- Створення замовлення ---

    async def submit_order(self, lines: Iterable[OrderLine], customer: CustomerRef) -> Order:
        lines = list(lines)
        if not lines:
            raise InvalidOrderError("Замовлення не містить жодного номера")
        for line in lines:
            if line.price_units <= 0:
                raise InvalidOrderError(f"Некоректна ціна для номера {line.phone_number}: {line.price_units}")

        rate = Decimal(str(await self.rates.get_rate()))
        if rate <= 0:
            raise UpstreamUnavailableError(f"Некоректний курс TON: {rate}")
        total_uah = sum(line.price_units for line in lines)
        discounted_uah, total_ton = calculate_ton_quote(total_uah, rate, self.discount_percent)

        stored = None
        for attempt in range(2):
            now = self.now()
            order = Order(
                order_id=self._id_factory(),
                lines=lines,
                customer=customer,
                created_at=now,
                total_uah=total_uah,
                ton_rate=rate,
                discount_percent=self.discount_percent,
                discounted_uah=discounted_uah,
                total_ton=total_ton,
            )
            order.move_to(OrderState.awaiting_admin_decision, now, "order submitted")
            try:
                stored = await self.store.insert(order)
                break
            except DuplicateOrderError:
                if attempt:
                    raise
                logger.warning(f"Колізія ID замовлення {order.order_id}, генерую новий.")

        logger.info(
            f"Створено замовлення {stored.order_id}: {len(lines)} номер(ів), "
            f"{stored.total_uah} грн / {stored.total_ton} TON (курс {rate})"
        )
        await self._dispatch([
            OutgoingMessage(chat_id=customer.id, text=order_formatter.customer_order_created(stored)),
            OutgoingMessage(
                chat_id=self.admin_id,
                text=order_formatter.admin_new_order(stored),
                buttons=self._admin_decision_buttons(stored.order_id),
            ),
        ])
        return stored

    # --- Рішення адміна ---

    async def admin_decision(self, order_id: str, decision: AdminDecision) -> bool:
        """Повертає False, якщо замовлення не знайдено або вже оброблено."""
        async with self._order_lock(order_id):
            order = await self.store.get(order_id)
            if order is None or order.state != OrderState.awaiting_admin_decision:
                logger.info(f"Рішення адміна ({decision.value}) для {order_id}: не знайдено або вже оброблено.")
                return False

            if decision == AdminDecision.unavailable:
                self._move(order, OrderState.rejected, "admin: unavailable")
                messages = [
                    OutgoingMessage(chat_id=order.customer.id, text=order_formatter.customer_rejected(order)),
                    OutgoingMessage(chat_id=self.admin_id, text=order_formatter.admin_rejected_ack(order)),
                ]
            else:
                self._move(order, OrderState.awaiting_delivery_data, "admin: available")
                messages = [
                    OutgoingMessage(
                        chat_id=order.customer.id,
                        text=order_formatter.customer_delivery_request(order),
                        buttons=self._delivery_form_buttons(order.order_id),
                    ),
                    OutgoingMessage(chat_id=self.admin_id, text=order_formatter.admin_available_ack(order)),
                ]
            await self.store.update(order)

        await self._dispatch(messages)
        return True

    # --- Дані доставки ---

    async def submit_delivery_data(self, order_id: str, data: DeliveryData) -> Order:
        async with self._order_lock(order_id):
            order = await self.store.get(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            if order.state not in (OrderState.awaiting_delivery_data, OrderState.awaiting_payment_choice):
                raise OrderNotFoundError(order_id, f"delivery data not expected in state {order.state.value}")

            reason = "delivery data resubmitted" if order.delivery else "delivery data submitted"
            order.delivery = data
            self._move(order, OrderState.awaiting_payment_choice, reason)
            stored = await self.store.update(order)

        await self._dispatch([self._payment_prompt(stored)])
        return stored

    # --- Вибір оплати ---

    async def choose_payment(self, order_id: str, method: PaymentMethod) -> Optional[PaymentInstructions]:
        instructions = None
        async with self._order_lock(order_id):
            order = await self.store.get(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            if order.state != OrderState.awaiting_payment_choice:
                raise OrderNotFoundError(order_id, f"payment choice not expected in state {order.state.value}")

            if method == PaymentMethod.cash_on_delivery:
                order.payment_method = method
                self._move(order, OrderState.confirmed_cash, "payment: cash on delivery")
                messages = [
                    OutgoingMessage(chat_id=self.admin_id, text=order_formatter.admin_cash_confirmed(order)),
                    OutgoingMessage(chat_id=order.customer.id, text=order_formatter.customer_cash_confirmed(order)),
                ]
                await self.store.update(order)
            else:
                if not self.ton_wallet_address:
                    raise UpstreamUnavailableError("Адресу TON-гаманця не налаштовано")
                now = self.now()
                order.payment_method = method
                order.payment_chosen_at = now
                order.ton_deadline = now + self.ton_timeout
                self._move(order, OrderState.awaiting_ton_payment, "payment: ton")
                await self.store.update(order)
                self.timeouts.schedule(order_id, order.ton_deadline)

                instructions = PaymentInstructions(
                    order_id=order.order_id,
                    wallet_address=self.ton_wallet_address,
                    amount_ton=order.total_ton,
                    comment=order.order_id,
                    deadline=order.ton_deadline,
                )
                messages = [
                    self._ton_instructions(order),
                    OutgoingMessage(chat_id=self.admin_id, text=order_formatter.admin_ton_heads_up(order)),
                ]

        await self._dispatch(messages)
        return instructions

    # --- Оплата в TON ---

    def is_amount_acceptable(self, order: Order, amount: Decimal) -> bool:
        """Недоплата в межах допуску приймається, переплата - завжди."""
        minimum = order.total_ton * (Decimal(100) - self.tolerance_percent) / Decimal(100)
        return Decimal(str(amount)) >= minimum

    def is_within_payment_window(self, order: Order, tx_time: datetime) -> bool:
        if order.payment_chosen_at is None:
            return False
        return tx_time >= order.payment_chosen_at - self.clock_skew

    async def confirm_ton_payment(
        self,
        order_id: str,
        amount: Decimal,
        tx_ref: str,
        tx_time: Optional[datetime] = None,
    ) -> bool:
        """
        Викликається перевіркою платежів. Повторні підтвердження ігноруються.
        Без часу транзакції вважається, що вона відбулася зараз.
        """
        tx_time = tx_time or self.now()
        async with self._order_lock(order_id):
            order = await self.store.get(order_id)
            if order is None or order.state != OrderState.awaiting_ton_payment:
                logger.info(f"Підтвердження оплати {tx_ref} для {order_id} проігноровано: не очікує оплату.")
                return False
            if not self.is_amount_acceptable(order, amount):
                logger.warning(
                    f"Замовлення {order_id}: сума {amount} TON менша за очікувану {order.total_ton} TON "
                    f"(допуск {self.tolerance_percent}%)."
                )
                return False
            if not self.is_within_payment_window(order, tx_time):
                logger.warning(f"Замовлення {order_id}: транзакція {tx_ref} від {tx_time} раніше за вибір оплати.")
                return False

            order.ton_tx_ref = tx_ref
            order.ton_paid_amount = Decimal(str(amount))
            self._move(order, OrderState.paid, f"ton payment confirmed: {tx_ref}")
            await self.store.update(order)
            self.timeouts.cancel(order_id)

        await self._dispatch([
            OutgoingMessage(chat_id=order.customer.id, text=order_formatter.customer_ton_paid(order)),
            OutgoingMessage(chat_id=self.admin_id, text=order_formatter.admin_ton_receipt(order)),
        ])
        return True

    async def cancel_ton_payment(self, order_id: str, reason: TonCancelReason = TonCancelReason.customer) -> bool:
        """Повертає замовлення до вибору оплати. Тільки зі стану очікування TON."""
        timed_out = reason == TonCancelReason.timeout
        async with self._order_lock(order_id):
            order = await self.store.get(order_id)
            if order is None or order.state != OrderState.awaiting_ton_payment:
                return False
            if timed_out and order.ton_deadline and self.now() < order.ton_deadline:
                # Таймер від попередньої спроби оплати
                return False

            order.payment_method = None
            order.payment_chosen_at = None
            order.ton_deadline = None
            self._move(order, OrderState.awaiting_payment_choice, f"ton payment cancelled: {reason.value}")
            await self.store.update(order)
            self.timeouts.cancel(order_id)

        await self._dispatch([
            OutgoingMessage(chat_id=self.admin_id, text=order_formatter.admin_ton_cancelled(order, timed_out)),
            OutgoingMessage(
                chat_id=order.customer.id,
                text=order_formatter.customer_ton_fallback(order, timed_out),
                buttons=self._payment_buttons(order),
            ),
        ])
        return True

    async def expire_ton_payment(self, order_id: str) -> bool:
        return await self.cancel_ton_payment(order_id, TonCancelReason.timeout)

    async def sweep_expired_ton_payments(self) -> List[str]:
        """Повертає до вибору оплати всі замовлення з простроченим очікуванням TON."""
        expired = []
        now = self.now()
        for order in await self.store.list_by_state(OrderState.awaiting_ton_payment):
            if order.ton_deadline and now >= order.ton_deadline:
                if await self.expire_ton_payment(order.order_id):
                    expired.append(order.order_id)
        if expired:
            logger.info(f"Прострочені TON-оплати повернуто до вибору оплати: {expired}")
        return expired

    async def restore_pending_ton_payments(self) -> List[str]:
        """Після перезапуску повертає в роботу замовлення, що чекають TON, і заново ставить їхні таймери."""
        # Оплачені теж: їхні транзакції не можна зарахувати вдруге
        restored = await self.store.restore([OrderState.awaiting_ton_payment, OrderState.paid])
        pending = [order for order in restored if order.state == OrderState.awaiting_ton_payment]
        for order in pending:
            if order.ton_deadline:
                self.timeouts.schedule(order.order_id, order.ton_deadline)
        return [order.order_id for order in pending]

    # --- Читання ---

    async def get_order(self, order_id: str) -> Optional[Order]:
        return await self.store.get(order_id)

    async def list_orders(self, state: Optional[OrderState] = None) -> List[Order]:
        return await self.store.list_by_state(state)

    async def resend_current_prompt(self, order_id: str) -> bool:
        """Повторно надсилає клієнту повідомлення для поточного стану замовлення."""
        order = await self.store.get(order_id)
        if order is None:
            return False
        if order.state == OrderState.awaiting_delivery_data:
            message = OutgoingMessage(
                chat_id=order.customer.id,
                text=order_formatter.customer_delivery_request(order),
                buttons=self._delivery_form_buttons(order.order_id),
            )
        elif order.state == OrderState.awaiting_payment_choice:
            message = self._payment_prompt(order)
        elif order.state == OrderState.awaiting_ton_payment and self.ton_wallet_address:
            message = self._ton_instructions(order)
        else:
            message = OutgoingMessage(chat_id=order.customer.id, text=order_formatter.order_status(order))
        await self._dispatch([message])
        return True

    # --- Внутрішні хелпери ---

    def _move(self, order: Order, target: OrderState, reason: str) -> None:
        previous = order.state
        order.move_to(target, self.now(), reason)
        logger.info(f"Замовлення {order.order_id}: {previous.value} -> {target.value} ({reason})")

    async def _dispatch(self, messages: List[OutgoingMessage]) -> None:
        for message in messages:
            try:
                await self.notifier.send(message)
            except NotificationDeliveryError as e:
                logger.error(f"Повідомлення для чату {message.chat_id} не доставлено: {e}")

    def _admin_decision_buttons(self, order_id: str) -> List[List[Button]]:
        return [[
            Button(text="✅ В наявності", action=OrderAction.available, order_id=order_id),
            Button(text="❌ Номера немає", action=OrderAction.unavailable, order_id=order_id),
        ]]

    def _delivery_form_buttons(self, order_id: str) -> List[List[Button]]:
        buttons = []
        if self.delivery_form_url:
            separator = "&" if "?" in self.delivery_form_url else "?"
            buttons.append([Button(text="🌐 Відкрити форму", url=f"{self.delivery_form_url}{separator}order_id={order_id}")])
        buttons.append([Button(text="📝 Заповнити дані", action=OrderAction.fill_form, order_id=order_id)])
        return buttons

    def _payment_buttons(self, order: Order) -> List[List[Button]]:
        return [
            [Button(text="💵 Оплата при отриманні", action=OrderAction.pay_cash, order_id=order.order_id)],
            [Button(
                text=f"💎 Оплатити в TON -{order.discount_percent}% ({order_formatter.format_ton(order.total_ton)} TON)",
                action=OrderAction.pay_ton,
                order_id=order.order_id,
            )],
        ]

    def _payment_prompt(self, order: Order) -> OutgoingMessage:
        return OutgoingMessage(
            chat_id=order.customer.id,
            text=order_formatter.customer_payment_prompt(order),
            buttons=self._payment_buttons(order),
        )

    def _ton_instructions(self, order: Order) -> OutgoingMessage:
        timeout_minutes = int(self.ton_timeout.total_seconds() // 60)
        return OutgoingMessage(
            chat_id=order.customer.id,
            text=order_formatter.customer_ton_instructions(order, self.ton_wallet_address, timeout_minutes),
            buttons=[
                [Button(text="🔄 Перевірити оплату", action=OrderAction.ton_check, order_id=order.order_id)],
                [Button(text="↩️ Скасувати оплату в TON", action=OrderAction.ton_cancel, order_id=order.order_id)],
            ],
        )
