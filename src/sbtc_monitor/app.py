"""
Process bootstrap: builds the monitor and its collaborators from settings
and ties its lifetime to the process signals.
"""

import asyncio
import signal
from dataclasses import dataclass

from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

from sbtc_monitor.chain import HiroStacksProvider
from sbtc_monitor.config import Settings, get_settings
from sbtc_monitor.db import init_db, make_engine, make_session_factory
from sbtc_monitor.logging_config import configure_logging, get_logger
from sbtc_monitor.monitor import MonitorConfig, TransactionMonitor
from sbtc_monitor.notifier import WebhookNotifier
from sbtc_monitor.store import SqlTransactionStore
from sbtc_monitor.telemetry import init_telemetry

logger = get_logger("sbtc-monitor")


@dataclass
class Application:
    monitor: TransactionMonitor
    provider: HiroStacksProvider
    notifier: WebhookNotifier

    async def close(self) -> None:
        await self.monitor.aclose()
        await self.provider.close()
        await self.notifier.close()


def build_application(
    settings: Settings | None = None, config: MonitorConfig | None = None
) -> Application:
    settings = settings or get_settings()
    configure_logging(settings.server.log_level)

    engine = make_engine(settings.database)
    if settings.server.otel_enabled:
        init_telemetry(
            settings.server.otel_service_name,
            str(settings.server.otel_exporter_otlp_endpoint),
            network=settings.chain.network,
        )
        SQLAlchemyInstrumentor().instrument(engine=engine)
        logger.info(
            "telemetry_initialized",
            service_name=settings.server.otel_service_name,
            endpoint=str(settings.server.otel_exporter_otlp_endpoint),
        )
    init_db(engine)

    provider = HiroStacksProvider.from_settings(settings.chain)
    notifier = WebhookNotifier.from_settings(settings.webhook)
    store = SqlTransactionStore(make_session_factory(engine))
    monitor = TransactionMonitor(
        provider=provider,
        store=store,
        notifier=notifier,
        config=config or MonitorConfig.from_settings(settings),
    )
    logger.info(
        "monitor_configured",
        network=settings.chain.network,
        api_url=settings.chain.base_url,
        webhook_enabled=notifier.enabled,
    )
    return Application(monitor=monitor, provider=provider, notifier=notifier)


def install_signal_handlers(monitor: TransactionMonitor) -> None:
    """Stop every timer on SIGINT/SIGTERM so none outlive shutdown."""
    loop = asyncio.get_running_loop()

    def _shutdown(signame: str) -> None:
        logger.info("shutdown_signal_received", signal=signame)
        monitor.stop_all()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _shutdown, sig.name)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(sig, lambda signum, frame: monitor.stop_all())
