"""
Confirmation monitor for submitted Stacks transactions.

Each tracked transaction is polled on its own timer until it reaches one of
three terminal outcomes:

- confirmed: included and at least `confirmation_threshold` blocks deep
- failed: aborted on-chain (post-condition or response abort)
- timeout: `max_retries` cycles passed without a terminal chain status

A transaction has at most one scheduled timer or one running poll at a time;
the next poll is scheduled only after the current cycle has finished its
writes. Public operations never raise.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog
from opentelemetry import trace
from pydantic import BaseModel, Field

from sbtc_monitor.chain.interfaces import (
    ChainStatusProvider,
    TransactionStatus,
    normalize_tx_id,
)
from sbtc_monitor.config import Settings
from sbtc_monitor.db import TransactionState
from sbtc_monitor.logging_config import bind_transaction, clear_transaction_context
from sbtc_monitor.notifier import Notifier, WebhookNotifier
from sbtc_monitor.store import PollObservation, TransactionStore

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

StatusCallback = Callable[[str, dict[str, Any]], Any]

EVENT_CONFIRMED = "confirmed"
EVENT_FAILED = "failed"
EVENT_TIMEOUT = "timeout"


class MonitorConfig(BaseModel):
    """Per-monitor polling policy and hooks."""

    confirmation_threshold: int = Field(1, ge=1)
    max_retries: int = Field(120, ge=1)
    retry_interval_ms: int = Field(5000, ge=0)
    initial_delay_ms: int = Field(1000, ge=0)
    webhook_url: str | None = None
    on_status_update: StatusCallback | None = None

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "MonitorConfig":
        values: dict[str, Any] = settings.monitor.model_dump()
        values["webhook_url"] = str(settings.webhook.url) if settings.webhook.url else None
        values.update(overrides)
        return cls(**values)


@dataclass
class _Tracker:
    tx_id: str
    payment_id: str | None
    attempts: int = 0
    confirmations: int = 0
    active: bool = True
    finished: bool = False
    handle: asyncio.TimerHandle | None = None
    task: asyncio.Task | None = None


class TransactionMonitor:
    """
    Drives tracked transactions from submission to a terminal outcome.

    Collaborators are injected so callers (and tests) can construct isolated
    monitors:
    - provider: reads transaction status and chain tip
    - store: persists the tracked record and applies payment side effects
    - notifier: delivers terminal events; defaults to a WebhookNotifier for
      `config.webhook_url`
    """

    def __init__(
        self,
        provider: ChainStatusProvider,
        store: TransactionStore,
        notifier: Notifier | None = None,
        config: MonitorConfig | None = None,
    ):
        self.config = config or MonitorConfig()
        self.provider = provider
        self.store = store
        self._owned_notifier: WebhookNotifier | None = None
        if notifier is None:
            notifier = self._owned_notifier = WebhookNotifier(self.config.webhook_url)
        self.notifier = notifier
        self._trackers: dict[str, _Tracker] = {}
        self._idle = asyncio.Event()
        self._idle.set()

    # Public API

    async def start_monitoring(self, tx_id: str, payment_id: str | None = None) -> None:
        """
        Begin tracking `tx_id`. Starting an id that is already tracked is a
        no-op, so a payment can never be settled twice by the same monitor.
        """
        tx_id = _clean_tx_id(tx_id)
        if tx_id is None:
            logger.warning("start_monitoring_rejected", reason="invalid tx_id")
            return
        if tx_id in self._trackers:
            logger.info("already_monitoring", tx_id=tx_id)
            return

        tracker = _Tracker(tx_id=tx_id, payment_id=payment_id)
        self._trackers[tx_id] = tracker
        self._idle.clear()
        logger.info("monitoring_started", tx_id=tx_id, payment_id=payment_id)

        try:
            await self.store.record_started(tx_id, payment_id)
        except Exception as e:
            logger.error("transaction_store_failed", tx_id=tx_id, error=str(e), exc_info=True)

        self._schedule(tracker, self.config.initial_delay_ms)

    def stop_monitoring(self, tx_id: str) -> None:
        """Cancel the pending poll for `tx_id`. The persisted record is kept."""
        tracker = self._trackers.get(_clean_tx_id(tx_id))
        if tracker is None:
            return
        self._deregister(tracker)
        logger.info("monitoring_stopped", tx_id=tracker.tx_id)

    def stop_all(self) -> None:
        """Cancel every pending poll. Safe to call from a signal handler."""
        for tx_id in list(self._trackers):
            try:
                self.stop_monitoring(tx_id)
            except Exception as e:
                logger.error("stop_monitoring_failed", tx_id=tx_id, error=str(e))

    async def aclose(self) -> None:
        """Stop everything and wait for polls that were already running."""
        in_flight = [t.task for t in self._trackers.values() if t.task is not None]
        self.stop_all()
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
        if self._owned_notifier is not None:
            await self._owned_notifier.close()

    async def join(self) -> None:
        """Wait until no transaction is being tracked."""
        await self._idle.wait()

    def is_monitoring(self, tx_id: str) -> bool:
        return _clean_tx_id(tx_id) in self._trackers

    def active_transactions(self) -> list[str]:
        return list(self._trackers)

    # Scheduling

    def _schedule(self, tracker: _Tracker, delay_ms: int) -> None:
        if not tracker.active:
            return
        loop = asyncio.get_running_loop()
        tracker.handle = loop.call_later(delay_ms / 1000, self._fire, tracker)

    def _fire(self, tracker: _Tracker) -> None:
        tracker.handle = None
        if not tracker.active:
            return
        tracker.task = asyncio.create_task(
            self._run_cycle(tracker), name=f"poll:{tracker.tx_id}"
        )

    def _deregister(self, tracker: _Tracker) -> None:
        tracker.active = False
        if tracker.handle is not None:
            tracker.handle.cancel()
            tracker.handle = None
        if self._trackers.get(tracker.tx_id) is tracker:
            del self._trackers[tracker.tx_id]
        if not self._trackers:
            self._idle.set()

    # Poll cycle

    async def _run_cycle(self, tracker: _Tracker) -> None:
        bind_transaction(tracker.tx_id)
        try:
            with tracer.start_as_current_span("monitor.poll_cycle") as span:
                span.set_attribute("tx.id", tracker.tx_id)
                span.set_attribute("tx.attempt", tracker.attempts + 1)
                await self._poll_once(tracker)
        except Exception as e:
            logger.error("poll_cycle_crashed", tx_id=tracker.tx_id, error=str(e), exc_info=True)
            if tracker.active and not tracker.finished and tracker.handle is None:
                await self._continue_or_timeout(tracker)
        finally:
            tracker.task = None
            clear_transaction_context()

    async def _poll_once(self, tracker: _Tracker) -> None:
        tracker.attempts += 1
        attempt = tracker.attempts

        try:
            status = await self.provider.get_transaction_status(tracker.tx_id)
            confirmations = 0
            if status.is_success:
                confirmations = await self._confirmations(tracker, status)
        except Exception as e:
            # Network errors and 5xx responses are retryable up to the attempt cap
            logger.warning(
                "status_query_failed",
                tx_id=tracker.tx_id,
                attempt=attempt,
                max_retries=self.config.max_retries,
                error=str(e),
            )
            if tracker.active:
                await self._continue_or_timeout(tracker)
            return

        if not tracker.active:
            logger.info("poll_result_discarded", tx_id=tracker.tx_id, reason="stopped")
            return

        await self._persist_observation(tracker, status, confirmations)
        if not tracker.active:
            return
        await self._notify_status_observer(tracker.tx_id, status)
        if not tracker.active:
            return

        if status.is_success and confirmations >= self.config.confirmation_threshold:
            logger.info(
                "transaction_confirmed",
                tx_id=tracker.tx_id,
                confirmations=confirmations,
                threshold=self.config.confirmation_threshold,
            )
            await self._finish(tracker, TransactionState.CONFIRMED)
        elif status.is_aborted:
            logger.info("transaction_aborted", tx_id=tracker.tx_id, tx_status=status.tx_status)
            await self._finish(tracker, TransactionState.FAILED, reason=status.tx_status)
        else:
            logger.info(
                "transaction_pending",
                tx_id=tracker.tx_id,
                tx_status=status.tx_status,
                confirmations=confirmations,
                threshold=self.config.confirmation_threshold,
                attempt=attempt,
            )
            await self._continue_or_timeout(tracker)

    async def _confirmations(self, tracker: _Tracker, status: TransactionStatus) -> int:
        if status.block_height is None:
            return tracker.confirmations
        current_height = await self.provider.get_current_block_height()
        depth = max(0, current_height - status.block_height + 1)
        # A lagging API node must not walk the count back
        tracker.confirmations = max(tracker.confirmations, depth)
        return tracker.confirmations

    async def _continue_or_timeout(self, tracker: _Tracker) -> None:
        if tracker.attempts >= self.config.max_retries:
            logger.warning(
                "monitoring_timeout", tx_id=tracker.tx_id, attempts=tracker.attempts
            )
            await self._finish(tracker, TransactionState.TIMEOUT)
            return
        self._schedule(tracker, self.config.retry_interval_ms)

    async def _persist_observation(
        self, tracker: _Tracker, status: TransactionStatus, confirmations: int
    ) -> None:
        transfer = status.transfer_details()
        observation = PollObservation(
            tx_id=tracker.tx_id,
            attempts=tracker.attempts,
            raw=status.raw,
            block_height=status.block_height if status.is_success else None,
            confirmations=confirmations if status.is_success else None,
            amount=transfer.amount,
            from_address=transfer.sender,
            to_address=transfer.recipient,
        )
        try:
            await self.store.record_poll(observation)
        except Exception as e:
            # The next cycle writes again
            logger.error("transaction_update_failed", tx_id=tracker.tx_id, error=str(e), exc_info=True)

    async def _notify_status_observer(self, tx_id: str, status: TransactionStatus) -> None:
        callback = self.config.on_status_update
        if callback is None:
            return
        try:
            result = callback(tx_id, status.raw)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("status_callback_failed", tx_id=tx_id, error=str(e), exc_info=True)

    # Terminal handling

    async def _finish(
        self, tracker: _Tracker, state: TransactionState, reason: str | None = None
    ) -> None:
        if tracker.finished:
            return
        tracker.finished = True

        try:
            with tracer.start_as_current_span("monitor.terminal") as span:
                span.set_attribute("tx.id", tracker.tx_id)
                span.set_attribute("tx.state", state.value)

                try:
                    await self.store.record_terminal(
                        tracker.tx_id, state, tracker.attempts, reason=reason
                    )
                except Exception as e:
                    logger.error(
                        "terminal_state_write_failed",
                        tx_id=tracker.tx_id,
                        state=state.value,
                        error=str(e),
                        exc_info=True,
                    )

                if state is TransactionState.CONFIRMED:
                    await self._handle_confirmed(tracker)
                elif state is TransactionState.FAILED:
                    await self._handle_failed(tracker, reason or "unknown")
                else:
                    await self._handle_timeout(tracker)
        finally:
            self._deregister(tracker)

    async def _handle_confirmed(self, tracker: _Tracker) -> None:
        if tracker.payment_id:
            await self._apply_payment_effect(
                tracker,
                "complete_payment",
                lambda: self.store.complete_payment(tracker.payment_id, tracker.confirmations),
            )
        await self._send_event(
            tracker,
            EVENT_CONFIRMED,
            {"paymentId": tracker.payment_id, "confirmations": tracker.confirmations},
        )

    async def _handle_failed(self, tracker: _Tracker, reason: str) -> None:
        if tracker.payment_id:
            await self._apply_payment_effect(
                tracker,
                "fail_payment",
                lambda: self.store.fail_payment(tracker.payment_id, reason),
            )
        await self._send_event(
            tracker, EVENT_FAILED, {"paymentId": tracker.payment_id, "reason": reason}
        )

    async def _handle_timeout(self, tracker: _Tracker) -> None:
        if tracker.payment_id:
            await self._apply_payment_effect(
                tracker,
                "expire_payment",
                lambda: self.store.expire_payment(tracker.payment_id),
            )
        await self._send_event(
            tracker, EVENT_TIMEOUT, {"paymentId": tracker.payment_id, "attempts": tracker.attempts}
        )

    async def _apply_payment_effect(
        self, tracker: _Tracker, effect: str, write: Callable[[], Awaitable[bool]]
    ) -> None:
        try:
            applied = await write()
        except Exception as e:
            logger.error(
                "payment_update_failed",
                tx_id=tracker.tx_id,
                payment_id=tracker.payment_id,
                effect=effect,
                error=str(e),
                exc_info=True,
            )
            return
        logger.info(
            "payment_updated",
            tx_id=tracker.tx_id,
            payment_id=tracker.payment_id,
            effect=effect,
            applied=applied,
        )

    async def _send_event(self, tracker: _Tracker, event: str, data: dict[str, Any]) -> None:
        try:
            await self.notifier.send(event, tracker.tx_id, datetime.now(UTC), data)
        except Exception as e:
            logger.error(
                "notification_failed", tx_id=tracker.tx_id, webhook_event=event, error=str(e), exc_info=True
            )


def _clean_tx_id(tx_id: Any) -> str | None:
    """Registry key for `tx_id`, or None when it is not a usable id."""
    if not isinstance(tx_id, str) or not tx_id.strip():
        return None
    tx_id = normalize_tx_id(tx_id)
    return tx_id if tx_id != "0x" else None
