"""Pytest configuration and shared fixtures."""

import asyncio
from collections.abc import Iterable
from datetime import datetime
from typing import Any

import pytest

from sbtc_monitor.chain.interfaces import TransactionStatus
from sbtc_monitor.config import DatabaseSettings
from sbtc_monitor.db import (
    Payment,
    PaymentStatus,
    TransactionState,
    User,
    init_db,
    make_engine,
    make_session_factory,
)
from sbtc_monitor.monitor import MonitorConfig, TransactionMonitor
from sbtc_monitor.store import PollObservation, SqlTransactionStore


def success(tx_id: str, block_height: int, **extra: Any) -> TransactionStatus:
    return TransactionStatus.from_api(
        tx_id, {"tx_id": tx_id, "tx_status": "success", "block_height": block_height, **extra}
    )


def pending(tx_id: str) -> TransactionStatus:
    return TransactionStatus.from_api(tx_id, {"tx_id": tx_id, "tx_status": "pending"})


def aborted(tx_id: str, reason: str = "abort_by_response") -> TransactionStatus:
    return TransactionStatus.from_api(
        tx_id, {"tx_id": tx_id, "tx_status": reason, "block_height": 100}
    )


class MockChainProvider:
    """
    Scripted chain provider. Each call consumes the next scripted item; the
    last item repeats. Exceptions in the script are raised instead of returned.
    """

    def __init__(
        self,
        statuses: Iterable[TransactionStatus | Exception] = (),
        heights: Iterable[int | Exception] = (),
    ):
        self.statuses = list(statuses)
        self.heights = list(heights)
        self.status_calls: list[str] = []
        self.height_calls = 0

    async def get_transaction_status(self, tx_id: str) -> TransactionStatus:
        self.status_calls.append(tx_id)
        item = self._next(self.statuses, len(self.status_calls))
        if item is None:
            return pending(tx_id)
        return item

    async def get_current_block_height(self) -> int:
        self.height_calls += 1
        item = self._next(self.heights, self.height_calls)
        return 0 if item is None else item

    @staticmethod
    def _next(script: list, call_number: int):
        if not script:
            return None
        item = script[min(call_number, len(script)) - 1]
        if isinstance(item, Exception):
            raise item
        return item


class MockStore:
    """In-memory TransactionStore that records every write."""

    def __init__(self, payments: dict[str, PaymentStatus] | None = None):
        self.started: list[tuple[str, str | None]] = []
        self.observations: list[PollObservation] = []
        self.terminal: dict[str, TransactionState] = {}
        self.terminal_reasons: dict[str, str | None] = {}
        self.payments: dict[str, PaymentStatus] = dict(payments or {})
        self.payment_calls: list[tuple[str, str]] = []
        self.credits: list[str] = []

    async def record_started(self, tx_id: str, payment_id: str | None) -> None:
        self.started.append((tx_id, payment_id))

    async def record_poll(self, observation: PollObservation) -> None:
        self.observations.append(observation)

    async def record_terminal(self, tx_id, state, attempts, reason=None) -> None:
        self.terminal.setdefault(tx_id, state)
        self.terminal_reasons.setdefault(tx_id, reason)

    async def complete_payment(self, payment_id: str, confirmations: int) -> bool:
        self.payment_calls.append(("complete", payment_id))
        if self.payments.get(payment_id) is PaymentStatus.COMPLETED:
            return False
        self.payments[payment_id] = PaymentStatus.COMPLETED
        self.credits.append(payment_id)
        return True

    async def fail_payment(self, payment_id: str, reason: str) -> bool:
        self.payment_calls.append(("fail", payment_id))
        self.payments[payment_id] = PaymentStatus.FAILED
        return True

    async def expire_payment(self, payment_id: str) -> bool:
        self.payment_calls.append(("expire", payment_id))
        self.payments[payment_id] = PaymentStatus.EXPIRED
        return True

    def confirmations_history(self, tx_id: str) -> list[int]:
        return [
            o.confirmations
            for o in self.observations
            if o.tx_id == tx_id and o.confirmations is not None
        ]


class MockNotifier:
    def __init__(self):
        self.events: list[dict[str, Any]] = []

    async def send(
        self, event: str, tx_id: str, timestamp: datetime, data: dict[str, Any]
    ) -> bool:
        self.events.append({"event": event, "txId": tx_id, "timestamp": timestamp, "data": data})
        return True


async def wait_until_idle(monitor: TransactionMonitor, timeout: float = 2.0) -> None:
    await asyncio.wait_for(monitor.join(), timeout=timeout)


@pytest.fixture
def store():
    return MockStore(payments={"pay_1": PaymentStatus.PENDING})


@pytest.fixture
def notifier():
    return MockNotifier()


@pytest.fixture
def make_monitor(store, notifier):
    """Build a monitor with zero delays so cycles run back to back."""

    def _make(provider: MockChainProvider, **config: Any) -> TransactionMonitor:
        values = {"initial_delay_ms": 0, "retry_interval_ms": 0, **config}
        return TransactionMonitor(
            provider=provider,
            store=store,
            notifier=notifier,
            config=MonitorConfig(**values),
        )

    return _make


@pytest.fixture
def session_factory():
    engine = make_engine(DatabaseSettings(url="sqlite://"))
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def sql_store(session_factory):
    return SqlTransactionStore(session_factory)


@pytest.fixture
def seller_payment(session_factory):
    """A pending 1000-sat payment (970 net) owned by a seller with no earnings."""
    with session_factory() as session, session.begin():
        seller = User(id="user_1", stx_address="ST2SELLER", total_earnings=0.0, total_payments=0)
        payment = Payment(
            id="pay_1",
            user_id="user_1",
            tx_id="0xaaa",
            amount=1000.0,
            net_amount=970.0,
            status=PaymentStatus.PENDING,
            meta={"payerAddress": "ST1PAYER"},
        )
        session.add_all([seller, payment])
    return "pay_1"
