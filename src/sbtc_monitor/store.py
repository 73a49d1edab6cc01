"""
Persistence for tracked transactions and the payment side effects of
their outcomes.

All writes are keyed: transactions by tx_id, payments and users by id.
Guards live in the same transaction as the write, so a terminal status is
never overwritten and a seller is credited at most once per payment.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from sbtc_monitor.db import (
    Payment,
    PaymentStatus,
    TrackedTransaction,
    TransactionState,
    User,
    utcnow,
)

logger = structlog.get_logger(__name__)


@dataclass
class PollObservation:
    """What one successful poll cycle learned about a transaction."""

    tx_id: str
    attempts: int
    raw: dict[str, Any]
    block_height: int | None = None
    confirmations: int | None = None
    amount: int | None = None
    from_address: str | None = None
    to_address: str | None = None


class TransactionStore(Protocol):
    async def record_started(self, tx_id: str, payment_id: str | None) -> None: ...

    async def record_poll(self, observation: PollObservation) -> None: ...

    async def record_terminal(
        self,
        tx_id: str,
        state: TransactionState,
        attempts: int,
        reason: str | None = None,
    ) -> None: ...

    async def complete_payment(self, payment_id: str, confirmations: int) -> bool: ...

    async def fail_payment(self, payment_id: str, reason: str) -> bool: ...

    async def expire_payment(self, payment_id: str) -> bool: ...


class SqlTransactionStore:
    """
    SQLAlchemy-backed store. Sessions are synchronous; every public
    coroutine runs its unit of work on a worker thread.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # Tracked transactions

    async def record_started(self, tx_id: str, payment_id: str | None) -> None:
        await asyncio.to_thread(self._record_started, tx_id, payment_id)

    async def record_poll(self, observation: PollObservation) -> None:
        await asyncio.to_thread(self._record_poll, observation)

    async def record_terminal(
        self,
        tx_id: str,
        state: TransactionState,
        attempts: int,
        reason: str | None = None,
    ) -> None:
        await asyncio.to_thread(self._record_terminal, tx_id, state, attempts, reason)

    def get_transaction(self, tx_id: str) -> TrackedTransaction | None:
        with self.session_factory() as session:
            return session.scalars(
                select(TrackedTransaction).where(TrackedTransaction.tx_id == tx_id)
            ).first()

    def _record_started(self, tx_id: str, payment_id: str | None) -> None:
        with self.session_factory() as session, session.begin():
            record = self._get_or_create(session, tx_id)
            if payment_id and not record.payment_id:
                record.payment_id = payment_id
            record.updated_at = utcnow()
        logger.debug("transaction_record_started", tx_id=tx_id, payment_id=payment_id)

    def _record_poll(self, observation: PollObservation) -> None:
        with self.session_factory() as session, session.begin():
            record = self._get_or_create(session, observation.tx_id)
            if record.status.is_terminal:
                logger.debug(
                    "poll_write_skipped_terminal",
                    tx_id=observation.tx_id,
                    status=record.status.value,
                )
                return

            record.raw_tx_data = observation.raw
            record.attempts = max(record.attempts or 0, observation.attempts)
            if observation.block_height is not None:
                record.block_height = observation.block_height
            if observation.confirmations is not None:
                record.confirmations = max(
                    record.confirmations or 0, observation.confirmations
                )
            if observation.amount is not None:
                record.amount = observation.amount
            if observation.from_address:
                record.from_address = observation.from_address
            if observation.to_address:
                record.to_address = observation.to_address
            record.updated_at = utcnow()

    def _record_terminal(
        self,
        tx_id: str,
        state: TransactionState,
        attempts: int,
        reason: str | None,
    ) -> None:
        with self.session_factory() as session, session.begin():
            record = self._get_or_create(session, tx_id)
            if record.status.is_terminal:
                logger.warning(
                    "terminal_state_already_recorded",
                    tx_id=tx_id,
                    existing=record.status.value,
                    attempted=state.value,
                )
                return
            record.status = state
            record.attempts = max(record.attempts or 0, attempts)
            if reason:
                record.failure_reason = reason
            record.updated_at = utcnow()

    def _get_or_create(self, session: Session, tx_id: str) -> TrackedTransaction:
        stmt = select(TrackedTransaction).where(TrackedTransaction.tx_id == tx_id)
        record = session.scalars(stmt).first()
        if record is not None:
            return record

        # A concurrent insert from another process fails the unique tx_id
        # constraint at flush; the caller logs it and the next cycle retries
        record = TrackedTransaction(tx_id=tx_id, status=TransactionState.PENDING)
        session.add(record)
        return record

    # Payment side effects

    async def complete_payment(self, payment_id: str, confirmations: int) -> bool:
        return await asyncio.to_thread(self._complete_payment, payment_id, confirmations)

    async def fail_payment(self, payment_id: str, reason: str) -> bool:
        return await asyncio.to_thread(self._fail_payment, payment_id, reason)

    async def expire_payment(self, payment_id: str) -> bool:
        return await asyncio.to_thread(self._expire_payment, payment_id)

    def _complete_payment(self, payment_id: str, confirmations: int) -> bool:
        with self.session_factory() as session, session.begin():
            payment = self._load_payment(session, payment_id)
            if payment is None:
                return False
            # EXPIRED is allowed: a timed-out transaction may still confirm later
            if payment.status not in (PaymentStatus.PENDING, PaymentStatus.EXPIRED):
                logger.warning(
                    "payment_completion_skipped",
                    payment_id=payment_id,
                    status=payment.status.value,
                )
                return False

            now = utcnow()
            payment.status = PaymentStatus.COMPLETED
            payment.completed_at = now
            payment.confirmations = confirmations
            payment.updated_at = now

            if payment.user_id:
                user = session.get(User, payment.user_id)
                if user is not None:
                    user.total_earnings = User.total_earnings + payment.net_amount
                    user.total_payments = User.total_payments + 1
                    user.updated_at = now
                    logger.info(
                        "seller_earnings_credited",
                        payment_id=payment_id,
                        user_id=payment.user_id,
                        net_amount=payment.net_amount,
                    )
                else:
                    logger.warning(
                        "payment_seller_missing",
                        payment_id=payment_id,
                        user_id=payment.user_id,
                    )
        return True

    def _fail_payment(self, payment_id: str, reason: str) -> bool:
        with self.session_factory() as session, session.begin():
            payment = self._load_payment(session, payment_id)
            if payment is None:
                return False
            if payment.status is PaymentStatus.COMPLETED:
                logger.warning("payment_failure_skipped_completed", payment_id=payment_id)
                return False

            now = utcnow()
            payment.status = PaymentStatus.FAILED
            payment.meta = _merge_meta(
                payment.meta, failureReason=reason, failedAt=_iso(now)
            )
            payment.updated_at = now
        return True

    def _expire_payment(self, payment_id: str) -> bool:
        with self.session_factory() as session, session.begin():
            payment = self._load_payment(session, payment_id)
            if payment is None:
                return False
            if payment.status is not PaymentStatus.PENDING:
                logger.warning(
                    "payment_expiry_skipped",
                    payment_id=payment_id,
                    status=payment.status.value,
                )
                return False

            now = utcnow()
            payment.status = PaymentStatus.EXPIRED
            payment.meta = _merge_meta(payment.meta, timeoutAt=_iso(now))
            payment.updated_at = now
        return True

    @staticmethod
    def _load_payment(session: Session, payment_id: str) -> Payment | None:
        payment = session.get(Payment, payment_id, with_for_update=True)
        if payment is None:
            logger.warning("payment_not_found", payment_id=payment_id)
        return payment


def _merge_meta(existing: dict[str, Any] | None, **values: Any) -> dict[str, Any]:
    # New dict so the JSON column registers the change
    return {**(existing or {}), **values}


def _iso(moment: datetime) -> str:
    return moment.isoformat()
