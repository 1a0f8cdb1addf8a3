"""In-memory order store and its write-behind mirror."""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from database.mirror import JsonFileOrderMirror
from database.order_store import InMemoryOrderStore
from models.exceptions import DuplicateOrderError, OrderNotFoundError
from models.order import CustomerRef, Order, OrderLine, OrderState
from tests.fakes import FakeMirror

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _order(order_id="abc123", created_at=T0, state=OrderState.awaiting_admin_decision):
    return Order(
        order_id=order_id,
        lines=[OrderLine(phone_number="+380671234567", price_units=5000)],
        customer=CustomerRef(id=42, username="alice"),
        created_at=created_at,
        total_uah=5000,
        ton_rate=Decimal("200"),
        discount_percent=5,
        discounted_uah=4750,
        total_ton=Decimal("23.75"),
        state=state,
    )


class TestInMemoryStore:

    async def test_insert_and_get_returns_copies(self):
        store = InMemoryOrderStore()
        await store.insert(_order())
        first = await store.get("abc123")
        first.state = OrderState.rejected
        assert (await store.get("abc123")).state == OrderState.awaiting_admin_decision

    async def test_get_unknown_returns_none(self):
        assert await InMemoryOrderStore().get("nope") is None

    async def test_duplicate_insert(self):
        store = InMemoryOrderStore()
        await store.insert(_order())
        with pytest.raises(DuplicateOrderError):
            await store.insert(_order())

    async def test_update_bumps_version(self):
        store = InMemoryOrderStore()
        inserted = await store.insert(_order())
        assert inserted.version == 1
        inserted.state = OrderState.rejected
        updated = await store.update(inserted)
        assert updated.version == 2
        assert (await store.get("abc123")).state == OrderState.rejected

    async def test_update_unknown(self):
        with pytest.raises(OrderNotFoundError):
            await InMemoryOrderStore().update(_order())

    async def test_list_by_state_sorted_by_creation(self):
        store = InMemoryOrderStore()
        await store.insert(_order("late", T0 + timedelta(minutes=5)))
        await store.insert(_order("early", T0))
        await store.insert(_order("paid", T0, OrderState.paid))

        pending = await store.list_by_state(OrderState.awaiting_admin_decision)
        assert [o.order_id for o in pending] == ["early", "late"]
        assert len(await store.list_by_state()) == 3


class TestMirror:

    async def test_every_write_reaches_mirror(self):
        mirror = FakeMirror()
        store = InMemoryOrderStore(mirror)
        order = await store.insert(_order())
        order.state = OrderState.rejected
        await store.update(order)
        await store.flush()
        assert mirror.saved["abc123"].state == OrderState.rejected
        assert mirror.saved["abc123"].version == 2

    async def test_mirror_failure_logged_not_raised(self, caplog):
        store = InMemoryOrderStore(FakeMirror(fail=True))
        with caplog.at_level(logging.ERROR):
            await store.insert(_order())
            await store.flush()
        assert (await store.get("abc123")) is not None
        assert "abc123" in caplog.text

    async def test_lazy_load_from_mirror(self):
        mirror = FakeMirror()
        first = InMemoryOrderStore(mirror)
        await first.insert(_order())
        await first.flush()

        restarted = InMemoryOrderStore(mirror)
        loaded = await restarted.get("abc123")
        assert loaded is not None
        assert loaded.version == 1
        # Після завантаження замовлення можна оновлювати
        loaded.state = OrderState.rejected
        assert (await restarted.update(loaded)).version == 2

    async def test_mirror_read_failure_returns_none(self):
        assert await InMemoryOrderStore(FakeMirror(fail=True)).get("abc123") is None

    async def test_json_file_mirror_roundtrip(self, tmp_path):
        mirror = JsonFileOrderMirror(tmp_path / "orders")
        store = InMemoryOrderStore(mirror)
        await store.insert(_order())
        await store.flush()

        assert (tmp_path / "orders" / "order_abc123.json").exists()
        restored = await InMemoryOrderStore(mirror).get("abc123")
        assert restored.total_ton == Decimal("23.75")
        assert restored.customer.username == "alice"

    async def test_json_file_mirror_rejects_unsafe_ids(self, tmp_path):
        mirror = JsonFileOrderMirror(tmp_path)
        assert await mirror.load("../etc/passwd") is None

    async def test_json_file_mirror_lists_all_orders(self, tmp_path):
        mirror = JsonFileOrderMirror(tmp_path)
        store = InMemoryOrderStore(mirror)
        await store.insert(_order("first"))
        await store.insert(_order("second", state=OrderState.awaiting_ton_payment))
        await store.flush()
        (tmp_path / "order_broken.json").write_text("{not json", encoding="utf-8")

        orders = await mirror.list_all()
        assert sorted(o.order_id for o in orders) == ["first", "second"]

    async def test_restore_loads_only_requested_states(self, tmp_path):
        mirror = JsonFileOrderMirror(tmp_path)
        store = InMemoryOrderStore(mirror)
        await store.insert(_order("waiting", state=OrderState.awaiting_ton_payment))
        await store.insert(_order("done", state=OrderState.paid))
        await store.flush()

        restarted = InMemoryOrderStore(mirror)
        restored = await restarted.restore([OrderState.awaiting_ton_payment])
        assert [o.order_id for o in restored] == ["waiting"]
        pending = await restarted.list_by_state(OrderState.awaiting_ton_payment)
        assert [o.order_id for o in pending] == ["waiting"]
        # Повторне відновлення не дублює вже завантажені
        assert await restarted.restore([OrderState.awaiting_ton_payment]) == []

    async def test_restore_failure_logged(self, caplog):
        store = InMemoryOrderStore(FakeMirror(fail=True))
        with caplog.at_level(logging.ERROR):
            assert await store.restore([OrderState.awaiting_ton_payment]) == []
        assert "дзеркала" in caplog.text

    async def test_mirror_bookkeeping_released(self):
        mirror = FakeMirror()
        store = InMemoryOrderStore(mirror)
        order = await store.insert(_order())
        order.state = OrderState.paid
        await store.update(order)
        await store.flush()

        assert mirror.saved["abc123"].state == OrderState.paid
        assert store._mirror_locks == {}
        assert "abc123" not in store._mirrored_versions
