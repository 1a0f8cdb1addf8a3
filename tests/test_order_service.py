"""Order state machine: transitions, quotes, notifications and races."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from database.order_store import InMemoryOrderStore
from models.exceptions import (
    DuplicateOrderError, InvalidOrderError, OrderNotFoundError, UpstreamUnavailableError,
)
from models.notification import OrderAction
from models.order import (
    AdminDecision, CustomerRef, DeliveryData, OrderLine, OrderState, PaymentMethod, TonCancelReason,
)
from services.order_service import OrderService, calculate_ton_quote
from tests.fakes import ADMIN_ID, CUSTOMER_ID, Clock, FakeNotifier, FakeRates, FakeTimeouts

WALLET = "UQ-test-wallet"


def _service(notifier=None, rates=None, clock=None, id_factory=None, wallet=WALLET, **kwargs):
    store = InMemoryOrderStore()
    notifier = notifier or FakeNotifier()
    rates = rates or FakeRates("200")
    timeouts = FakeTimeouts()
    clock = clock or Clock()
    extra = {"id_factory": id_factory} if id_factory else {}
    service = OrderService(
        store, notifier, rates, timeouts, ADMIN_ID,
        ton_wallet_address=wallet, clock=clock, **extra, **kwargs,
    )
    return service, store, notifier, rates, timeouts, clock


def _lines(*prices):
    return [OrderLine(phone_number=f"+38067123456{i}", price_units=p) for i, p in enumerate(prices)]


def _customer():
    return CustomerRef(id=CUSTOMER_ID, username="alice")


def _delivery(**overrides):
    data = dict(
        phone="+380671112233", last_name="Шевченко", first_name="Тарас",
        city="Київ", region="Київська", pickup_point_label="Відділення №1",
    )
    data.update(overrides)
    return DeliveryData(**data)


async def _order_awaiting_payment(service):
    order = await service.submit_order(_lines(5000), _customer())
    await service.admin_decision(order.order_id, AdminDecision.available)
    await service.submit_delivery_data(order.order_id, _delivery())
    return order.order_id


async def _order_awaiting_ton(service):
    order_id = await _order_awaiting_payment(service)
    await service.choose_payment(order_id, PaymentMethod.ton)
    return order_id


class TestSubmitOrder:

    async def test_ids_unique_and_total_is_exact_sum(self):
        service, *_ = _service()
        seen = set()
        for prices in [(5000,), (1, 2, 3), (15000, 8000), (999,)]:
            order = await service.submit_order(_lines(*prices), _customer())
            assert order.order_id not in seen
            seen.add(order.order_id)
            assert order.total_uah == sum(prices)
            assert order.state == OrderState.awaiting_admin_decision

    async def test_empty_lines_rejected_without_side_effects(self):
        service, store, notifier, *_ = _service()
        with pytest.raises(InvalidOrderError):
            await service.submit_order([], _customer())
        assert notifier.sent == []
        assert await store.list_by_state() == []

    async def test_non_positive_price_rejected(self):
        service, store, notifier, *_ = _service()
        with pytest.raises(InvalidOrderError):
            await service.submit_order(_lines(5000, 0), _customer())
        assert notifier.sent == []

    async def test_zero_rate_is_upstream_error(self):
        service, *_ = _service(rates=FakeRates("0"))
        with pytest.raises(UpstreamUnavailableError):
            await service.submit_order(_lines(5000), _customer())

    async def test_quote_frozen_when_rate_changes(self):
        service, store, notifier, rates, *_ = _service(rates=FakeRates("200"))
        order = await service.submit_order(_lines(5000), _customer())
        assert order.total_ton == Decimal("23.75")
        assert order.discounted_uah == 4750

        rates.rate = Decimal("100")
        await service.admin_decision(order.order_id, AdminDecision.available)
        await service.submit_delivery_data(order.order_id, _delivery())
        await service.choose_payment(order.order_id, PaymentMethod.ton)

        stored = await store.get(order.order_id)
        assert stored.total_ton == Decimal("23.75")
        assert stored.ton_rate == Decimal("200")
        assert rates.calls == 1

    async def test_id_collision_regenerated_once(self):
        ids = iter(["dup", "dup", "fresh"])
        service, *_ = _service(id_factory=lambda: next(ids))
        first = await service.submit_order(_lines(100), _customer())
        second = await service.submit_order(_lines(100), _customer())
        assert first.order_id == "dup"
        assert second.order_id == "fresh"

    async def test_repeated_collision_fails_hard(self):
        service, *_ = _service(id_factory=lambda: "same")
        await service.submit_order(_lines(100), _customer())
        with pytest.raises(DuplicateOrderError):
            await service.submit_order(_lines(100), _customer())


class TestQuote:

    def test_discount_and_rounding(self):
        assert calculate_ton_quote(5000, Decimal("200"), 5) == (4750, Decimal("23.75"))
        assert calculate_ton_quote(1000, Decimal("300"), 5) == (950, Decimal("3.17"))
        assert calculate_ton_quote(1000, Decimal("300"), 0) == (1000, Decimal("3.33"))


class TestAdminDecision:

    async def test_unavailable_then_available_is_noop(self):
        service, store, notifier, *_ = _service()
        order = await service.submit_order(_lines(5000), _customer())
        notifier.clear()

        assert await service.admin_decision(order.order_id, AdminDecision.unavailable) is True
        assert await service.admin_decision(order.order_id, AdminDecision.available) is False

        stored = await store.get(order.order_id)
        assert stored.state == OrderState.rejected
        assert len(notifier.to(CUSTOMER_ID)) == 1

    async def test_unknown_order_reports_not_found(self):
        service, _, notifier, *_ = _service()
        assert await service.admin_decision("missing", AdminDecision.available) is False
        assert notifier.sent == []

    async def test_available_sends_form_buttons(self):
        service, _, notifier, *_ = _service(delivery_form_url="https://example.org/form")
        order = await service.submit_order(_lines(5000), _customer())
        notifier.clear()
        await service.admin_decision(order.order_id, AdminDecision.available)

        [message] = notifier.to(CUSTOMER_ID)
        flat = [b for row in message.buttons for b in row]
        assert flat[0].url == f"https://example.org/form?order_id={order.order_id}"
        assert flat[1].action == OrderAction.fill_form


class TestDeliveryData:

    async def test_rejected_before_admin_decision(self):
        service, *_ = _service()
        order = await service.submit_order(_lines(5000), _customer())
        with pytest.raises(OrderNotFoundError):
            await service.submit_delivery_data(order.order_id, _delivery())

    async def test_unknown_order(self):
        service, *_ = _service()
        with pytest.raises(OrderNotFoundError):
            await service.submit_delivery_data("missing", _delivery())

    async def test_resubmission_overwrites_before_payment(self):
        service, store, *_ = _service()
        order_id = await _order_awaiting_payment(service)
        await service.submit_delivery_data(order_id, _delivery(city="Львів"))
        stored = await store.get(order_id)
        assert stored.delivery.city == "Львів"
        assert stored.state == OrderState.awaiting_payment_choice

    async def test_refused_after_terminal_state(self):
        service, *_ = _service()
        order_id = await _order_awaiting_payment(service)
        await service.choose_payment(order_id, PaymentMethod.cash_on_delivery)
        with pytest.raises(OrderNotFoundError):
            await service.submit_delivery_data(order_id, _delivery())

    def test_district_defaults_to_placeholder(self):
        assert _delivery().district == "-"
        assert _delivery(district="  ").district == "-"


class TestEndToEnd:

    async def test_cash_on_delivery_flow(self):
        service, store, notifier, *_ = _service()
        order = await service.submit_order(
            [OrderLine(phone_number="+380671234567", price_units=5000)],
            CustomerRef(id=CUSTOMER_ID, username="alice"),
        )
        assert order.order_id
        assert order.state == OrderState.awaiting_admin_decision
        [admin_message] = notifier.to(ADMIN_ID)
        assert admin_message.button_count == 2

        notifier.clear()
        await service.admin_decision(order.order_id, AdminDecision.available)
        assert (await store.get(order.order_id)).state == OrderState.awaiting_delivery_data
        assert len(notifier.to(CUSTOMER_ID)) == 1

        delivery = _delivery()
        await service.submit_delivery_data(order.order_id, delivery)
        assert (await store.get(order.order_id)).state == OrderState.awaiting_payment_choice

        notifier.clear()
        await service.choose_payment(order.order_id, PaymentMethod.cash_on_delivery)
        stored = await store.get(order.order_id)
        assert stored.state == OrderState.confirmed_cash
        assert stored.is_terminal
        [summary] = notifier.to(ADMIN_ID)
        for field in (delivery.phone, delivery.last_name, delivery.first_name, delivery.city,
                      delivery.region, delivery.district, delivery.pickup_point_label):
            assert field in summary.text


class TestTonPayment:

    async def test_choose_ton_returns_instructions_and_schedules_timeout(self):
        service, store, notifier, _, timeouts, clock = _service()
        order_id = await _order_awaiting_payment(service)
        notifier.clear()

        instructions = await service.choose_payment(order_id, PaymentMethod.ton)
        assert instructions.wallet_address == WALLET
        assert instructions.amount_ton == Decimal("23.75")
        assert instructions.comment == order_id
        assert timeouts.scheduled[order_id] == clock.now + timedelta(minutes=10)
        assert (await store.get(order_id)).state == OrderState.awaiting_ton_payment

        [customer_message] = notifier.to(CUSTOMER_ID)
        actions = {b.action for row in customer_message.buttons for b in row}
        assert actions == {OrderAction.ton_check, OrderAction.ton_cancel}

    async def test_ton_without_wallet_is_unavailable(self):
        service, store, *_ = _service(wallet=None)
        order_id = await _order_awaiting_payment(service)
        with pytest.raises(UpstreamUnavailableError):
            await service.choose_payment(order_id, PaymentMethod.ton)
        assert (await store.get(order_id)).state == OrderState.awaiting_payment_choice

    async def test_one_percent_underpayment_accepted(self):
        service, store, *_ = _service()
        order_id = await _order_awaiting_ton(service)
        amount = Decimal("23.75") * Decimal("0.99")
        assert await service.confirm_ton_payment(order_id, amount, "tx-1") is True
        stored = await store.get(order_id)
        assert stored.state == OrderState.paid
        assert stored.ton_tx_ref == "tx-1"

    async def test_five_percent_underpayment_rejected(self):
        service, store, notifier, *_ = _service()
        order_id = await _order_awaiting_ton(service)
        notifier.clear()
        amount = Decimal("23.75") * Decimal("0.95")
        assert await service.confirm_ton_payment(order_id, amount, "tx-1") is False
        assert (await store.get(order_id)).state == OrderState.awaiting_ton_payment
        assert notifier.sent == []

    async def test_overpayment_accepted(self):
        service, *_ = _service()
        order_id = await _order_awaiting_ton(service)
        assert await service.confirm_ton_payment(order_id, Decimal("100"), "tx-big") is True

    async def test_duplicate_confirmation_silent(self):
        service, _, notifier, _, timeouts, _ = _service()
        order_id = await _order_awaiting_ton(service)
        await service.confirm_ton_payment(order_id, Decimal("23.75"), "tx-1")
        notifier.clear()
        assert await service.confirm_ton_payment(order_id, Decimal("23.75"), "tx-1") is False
        assert notifier.sent == []
        assert order_id in timeouts.cancelled

    async def test_transaction_before_window_rejected(self):
        service, _, _, _, _, clock = _service()
        order_id = await _order_awaiting_ton(service)
        early = clock.now - timedelta(seconds=61)
        grace = clock.now - timedelta(seconds=59)
        assert await service.confirm_ton_payment(order_id, Decimal("23.75"), "tx-old", early) is False
        assert await service.confirm_ton_payment(order_id, Decimal("23.75"), "tx-new", grace) is True

    async def test_customer_cancel_returns_to_payment_choice(self):
        service, store, notifier, _, timeouts, _ = _service()
        order_id = await _order_awaiting_ton(service)
        notifier.clear()

        assert await service.cancel_ton_payment(order_id) is True
        stored = await store.get(order_id)
        assert stored.state == OrderState.awaiting_payment_choice
        assert stored.payment_method is None
        assert stored.ton_deadline is None
        assert order_id in timeouts.cancelled
        assert len(notifier.to(ADMIN_ID)) == 1
        [fallback] = notifier.to(CUSTOMER_ID)
        actions = {b.action for row in fallback.buttons for b in row}
        assert OrderAction.pay_cash in actions

        # Можна обрати оплату знову
        await service.choose_payment(order_id, PaymentMethod.cash_on_delivery)
        assert (await store.get(order_id)).state == OrderState.confirmed_cash

    async def test_timeout_before_deadline_is_noop(self):
        service, store, *_ = _service()
        order_id = await _order_awaiting_ton(service)
        assert await service.expire_ton_payment(order_id) is False
        assert (await store.get(order_id)).state == OrderState.awaiting_ton_payment

    async def test_timeout_transitions_back_exactly_once(self):
        service, store, notifier, _, _, clock = _service()
        order_id = await _order_awaiting_ton(service)
        notifier.clear()
        clock.advance(minutes=10, seconds=1)

        assert await service.sweep_expired_ton_payments() == [order_id]
        assert await service.sweep_expired_ton_payments() == []
        assert await service.expire_ton_payment(order_id) is False

        assert (await store.get(order_id)).state == OrderState.awaiting_payment_choice
        assert len(notifier.to(CUSTOMER_ID)) == 1
        history = (await store.get(order_id)).history
        assert sum(1 for h in history if "timeout" in h.reason) == 1


class TestResend:

    async def test_resend_current_prompt(self):
        service, _, notifier, *_ = _service()
        order_id = await _order_awaiting_payment(service)
        notifier.clear()
        assert await service.resend_current_prompt(order_id) is True
        [message] = notifier.to(CUSTOMER_ID)
        actions = {b.action for row in message.buttons for b in row}
        assert actions == {OrderAction.pay_cash, OrderAction.pay_ton}

    async def test_resend_unknown(self):
        service, *_ = _service()
        assert await service.resend_current_prompt("missing") is False


class TestNotificationFailures:

    async def test_failed_delivery_does_not_roll_back(self):
        service, store, *_ = _service(notifier=FakeNotifier(fail=True))
        order = await service.submit_order(_lines(5000), _customer())
        assert await service.admin_decision(order.order_id, AdminDecision.available) is True
        assert (await store.get(order.order_id)).state == OrderState.awaiting_delivery_data


class TestConcurrency:

    async def test_racing_admin_decisions_single_winner(self):
        service, store, notifier, *_ = _service()
        order = await service.submit_order(_lines(5000), _customer())
        notifier.clear()

        results = await asyncio.gather(
            service.admin_decision(order.order_id, AdminDecision.unavailable),
            service.admin_decision(order.order_id, AdminDecision.available),
        )
        assert sorted(results) == [False, True]
        assert len(notifier.to(CUSTOMER_ID)) == 1

    async def test_admin_decision_races_sweep(self):
        service, store, *_ = _service()
        order = await service.submit_order(_lines(5000), _customer())
        ton_order_id = await _order_awaiting_ton(service)
        service._clock.advance(minutes=11)

        decided, expired = await asyncio.gather(
            service.admin_decision(order.order_id, AdminDecision.unavailable),
            service.sweep_expired_ton_payments(),
        )
        assert decided is True
        assert expired == [ton_order_id]
        terminal = [o for o in await store.list_by_state() if o.is_terminal]
        assert [o.order_id for o in terminal] == [order.order_id]

    async def test_confirm_and_timeout_race_single_outcome(self):
        service, store, notifier, _, _, clock = _service()
        order_id = await _order_awaiting_ton(service)
        clock.advance(minutes=10, seconds=1)
        notifier.clear()

        confirmed, expired = await asyncio.gather(
            service.confirm_ton_payment(order_id, Decimal("23.75"), "tx-1"),
            service.expire_ton_payment(order_id),
        )
        assert confirmed is True
        assert expired is False
        stored = await store.get(order_id)
        assert stored.state == OrderState.paid
        assert [h.to_state for h in stored.history].count(OrderState.paid) == 1

    async def test_cancel_reason_recorded(self):
        service, store, *_ = _service()
        order_id = await _order_awaiting_ton(service)
        await service.cancel_ton_payment(order_id, TonCancelReason.customer)
        assert "customer" in (await store.get(order_id)).history[-1].reason

    async def test_locks_released_for_unknown_and_finished_orders(self):
        service, *_ = _service()
        for i in range(100):
            await service.admin_decision(f"missing-{i}", AdminDecision.available)
            await service.cancel_ton_payment(f"missing-{i}")
        order_id = await _order_awaiting_ton(service)
        await asyncio.gather(*(service.cancel_ton_payment(order_id) for _ in range(5)))
        assert service._locks == {}

    async def test_confirm_without_time_uses_current_time(self):
        service, store, *_ = _service()
        order_id = await _order_awaiting_ton(service)
        assert await service.confirm_ton_payment(order_id, Decimal("23.75"), "tx-now") is True
        assert (await store.get(order_id)).ton_tx_ref == "tx-now"
