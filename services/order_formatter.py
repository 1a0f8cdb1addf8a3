# services/order_formatter.py
"""Тексти повідомлень клієнту та адміну (parse_mode=HTML)."""
import html
from decimal import Decimal

from models.order import Order, OrderState

STATE_NAMES = {
    OrderState.created: "Створено",
    OrderState.awaiting_admin_decision: "Перевіряємо наявність",
    OrderState.awaiting_delivery_data: "Очікуємо дані для відправки",
    OrderState.awaiting_payment_choice: "Очікуємо вибір способу оплати",
    OrderState.awaiting_ton_payment: "Очікуємо оплату в TON",
    OrderState.confirmed_cash: "Прийнято (оплата при отриманні)",
    OrderState.paid: "Оплачено в TON",
    OrderState.rejected: "Номер недоступний",
}


def format_uah(amount: int) -> str:
    """5000 -> '5 000'"""
    return f"{amount:,}".replace(",", " ")


def format_ton(amount: Decimal) -> str:
    return f"{amount.normalize():f}"


def _escape(text: str) -> str:
    return html.escape(text, quote=False)


def _delivery_block(order: Order) -> str:
    if not order.delivery:
        return "немає"
    return "\n".join(_escape(line) for line in order.delivery.as_lines())


def _lines_block(order: Order) -> str:
    return "\n".join(f"{_escape(line.phone_number)} - {format_uah(line.price_units)} грн." for line in order.lines)


def _numbers(order: Order) -> str:
    return _escape(", ".join(order.phone_numbers))


def customer_order_created(order: Order) -> str:
    return (
        "🛒 Ваше замовлення\n\n"
        f"📱 Номер:\n{_lines_block(order)}\n\n"
        f"💰 Загальна сума: {format_uah(order.total_uah)} грн.\n"
        "або\n"
        f"💎 з додатковою знижкою (-{order.discount_percent}%) у TON: {format_ton(order.total_ton)} TON "
        f"(приблизно {format_uah(order.discounted_uah)} грн.)\n\n"
        f"👤 Замовник: {_escape(order.customer.label)}\n"
        f"🧾 Замовлення: {order.order_id}\n\n"
        "Зачекайте, будь ласка, відповіді менеджера,\n"
        "перевіряємо наявність номерів на ваше замовлення..."
    )


def admin_new_order(order: Order) -> str:
    return (
        "🛒 Нове замовлення!\n\n"
        f"📱 Номер:\n{_lines_block(order)}\n\n"
        f"💰 Загальна сума: {format_uah(order.total_uah)} грн.\n"
        f"💎 У TON: {format_ton(order.total_ton)} TON (курс {order.ton_rate} грн.)\n\n"
        f"👤 Замовник: {_escape(order.customer.label)} (ID: {order.customer.id})\n"
        f"🧾 Замовлення: {order.order_id}"
    )


def customer_rejected(order: Order) -> str:
    return "❌ Номер зараз недоступний, з вами зв'яжеться менеджер для уточнення інформації"


def admin_rejected_ack(order: Order) -> str:
    return f"❌ Замовлення {order.order_id}: відправлено повідомлення клієнту про відсутність номера"


def customer_delivery_request(order: Order) -> str:
    return (
        f"✅ Номер {_numbers(order)} в наявності!\n\n"
        "Повідомте, будь ласка, дані для відправки Новою поштою.\n"
        "Натисніть кнопку нижче, щоб заповнити форму:"
    )


def admin_available_ack(order: Order) -> str:
    return f"✅ Замовлення {order.order_id}: відправлено запит клієнту на заповнення даних"


def customer_payment_prompt(order: Order) -> str:
    return (
        "✅ Дані збережено!\n\n"
        f"📱 Номер: {_numbers(order)}\n"
        f"💰 Сума: {format_uah(order.total_uah)} грн.\n"
        f"💎 Або {format_ton(order.total_ton)} TON зі знижкою {order.discount_percent}%\n\n"
        "Виберіть спосіб оплати:"
    )


def admin_cash_confirmed(order: Order) -> str:
    return (
        "📦 Замовлення підтверджено (Оплата при отриманні)\n\n"
        f"🧾 Замовлення: {order.order_id}\n"
        f"📱 Номер: {_numbers(order)}\n"
        f"💰 Сума: {format_uah(order.total_uah)} грн.\n\n"
        f"👤 Замовник: {_escape(order.customer.label)} (ID: {order.customer.id})\n\n"
        f"📮 Дані для відправки:\n{_delivery_block(order)}"
    )


def customer_cash_confirmed(order: Order) -> str:
    return (
        "✅ Ваше замовлення прийняте.\n\n"
        "З вами можуть додатково зв'язатися для уточнення даних, що відсутні (невірні)"
    )


def customer_ton_instructions(order: Order, wallet_address: str, timeout_minutes: int) -> str:
    return (
        "💎 Оплата в TON\n\n"
        f"Надішліть рівно {format_ton(order.total_ton)} TON на адресу:\n"
        f"<code>{wallet_address}</code>\n\n"
        f"У коментарі до переказу вкажіть: <code>{order.order_id}</code>\n\n"
        f"⏳ Очікуємо оплату {timeout_minutes} хв. Після переказу натисніть «Перевірити оплату»."
    )


def admin_ton_heads_up(order: Order) -> str:
    return (
        f"💎 Клієнт {_escape(order.customer.label)} обрав оплату в TON\n"
        f"🧾 Замовлення: {order.order_id}\n"
        f"Очікувана сума: {format_ton(order.total_ton)} TON"
    )


def customer_ton_paid(order: Order) -> str:
    return (
        "✅ Оплату отримано! Дякуємо.\n\n"
        f"🧾 Замовлення: {order.order_id}\n"
        "Ми відправимо номер за вказаними даними."
    )


def admin_ton_receipt(order: Order) -> str:
    return (
        "💎 Замовлення оплачено в TON\n\n"
        f"🧾 Замовлення: {order.order_id}\n"
        f"📱 Номер: {_numbers(order)}\n"
        f"💰 Сума: {format_uah(order.total_uah)} грн.\n"
        f"💎 Очікувалось: {format_ton(order.total_ton)} TON (курс {order.ton_rate} грн.)\n"
        f"💎 Отримано: {format_ton(order.ton_paid_amount or Decimal('0'))} TON\n"
        f"🔗 Транзакція: {_escape(order.ton_tx_ref or '-')}\n\n"
        f"👤 Замовник: {_escape(order.customer.label)} (ID: {order.customer.id})\n\n"
        f"📮 Дані для відправки:\n{_delivery_block(order)}"
    )


def customer_ton_fallback(order: Order, timed_out: bool) -> str:
    reason = "⌛ Час очікування оплати в TON вийшов." if timed_out else "↩️ Оплату в TON скасовано."
    return (
        f"{reason}\n\n"
        f"Ви можете оплатити замовлення {order.order_id} при отриманні "
        f"({format_uah(order.total_uah)} грн.) або спробувати TON ще раз:"
    )


def admin_ton_cancelled(order: Order, timed_out: bool) -> str:
    reason = "вийшов час очікування" if timed_out else "скасовано клієнтом"
    return f"↩️ Оплата в TON для замовлення {order.order_id}: {reason}. Клієнту запропоновано оплату при отриманні."


def order_status(order: Order) -> str:
    return (
        f"🧾 Замовлення {order.order_id}\n"
        f"📱 Номер: {_numbers(order)}\n"
        f"💰 Сума: {format_uah(order.total_uah)} грн. / {format_ton(order.total_ton)} TON\n"
        f"📌 Статус: {STATE_NAMES[order.state]}"
    )
