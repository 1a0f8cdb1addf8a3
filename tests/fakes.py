"""In-memory fakes for the order workflow.

They implement the same protocols as the Telegram notifier, the rate source,
the APScheduler timeout registry and the Toncenter ledger, without any I/O.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from database.mirror import OrderMirror
from models.exceptions import NotificationDeliveryError, UpstreamUnavailableError
from models.notification import OutgoingMessage
from models.order import Order
from services.ton_service import LedgerTransaction

ADMIN_ID = 1000
CUSTOMER_ID = 42


class Clock:

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeNotifier:

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[OutgoingMessage] = []
        self.fail = fail

    async def send(self, message: OutgoingMessage) -> int:
        if self.fail:
            raise NotificationDeliveryError(f"chat {message.chat_id} unreachable")
        self.sent.append(message)
        return len(self.sent)

    def to(self, chat_id: int) -> list[OutgoingMessage]:
        return [m for m in self.sent if m.chat_id == chat_id]

    def clear(self) -> None:
        self.sent.clear()


class FakeRates:

    def __init__(self, rate: Decimal | str = "200") -> None:
        self.rate = Decimal(str(rate))
        self.calls = 0
        self.last_update = None

    async def get_rate(self) -> Decimal:
        self.calls += 1
        return self.rate


class FakeTimeouts:

    def __init__(self) -> None:
        self.scheduled: dict[str, datetime] = {}
        self.cancelled: list[str] = []

    def schedule(self, order_id: str, run_at: datetime) -> None:
        self.scheduled[order_id] = run_at

    def cancel(self, order_id: str) -> None:
        self.cancelled.append(order_id)
        self.scheduled.pop(order_id, None)


class FakeLedger:

    def __init__(self, transactions: list[LedgerTransaction] | None = None) -> None:
        self.transactions = list(transactions or [])
        self.fail = False
        self.calls = 0

    def add(self, tx_ref: str, amount: str, timestamp: datetime, comment: str = "") -> None:
        self.transactions.append(
            LedgerTransaction(tx_ref=tx_ref, amount=Decimal(amount), timestamp=timestamp, comment=comment)
        )

    async def get_incoming_transactions(self, address: str, limit: int = 50) -> list[LedgerTransaction]:
        self.calls += 1
        if self.fail:
            raise UpstreamUnavailableError("ledger down")
        return list(self.transactions)


class FakeMirror(OrderMirror):

    def __init__(self, fail: bool = False) -> None:
        self.saved: dict[str, Order] = {}
        self.writes: list[tuple[str, int]] = []
        self.fail = fail

    async def save(self, order: Order) -> None:
        if self.fail:
            raise OSError("disk full")
        self.writes.append((order.order_id, order.version))
        self.saved[order.order_id] = order.model_copy(deep=True)

    async def load(self, order_id: str) -> Order | None:
        if self.fail:
            raise OSError("disk unreadable")
        order = self.saved.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def list_all(self) -> list[Order]:
        if self.fail:
            raise OSError("disk unreadable")
        return [order.model_copy(deep=True) for order in self.saved.values()]
