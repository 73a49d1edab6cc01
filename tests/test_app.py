import signal
from unittest.mock import MagicMock

import pytest
from sqlalchemy import inspect

from sbtc_monitor.__main__ import parse_args
from sbtc_monitor.app import build_application, install_signal_handlers
from sbtc_monitor.config import Settings
from sbtc_monitor.monitor import TransactionMonitor


def test_parse_watch_args():
    args = parse_args(["watch", "0xaaa", "--payment-id", "pay_1", "--threshold", "3"])

    assert args.command == "watch"
    assert args.tx_ids == ["0xaaa"]
    assert args.payment_id == "pay_1"
    assert args.threshold == 3
    assert args.max_retries is None


@pytest.mark.asyncio
async def test_build_application_wires_collaborators(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    db_path = tmp_path / "monitor.db"
    settings = Settings(
        database={"url": f"sqlite:///{db_path}"},
        monitor={"confirmation_threshold": 2},
        webhook={"url": "https://merchant.example/hook"},
    )

    app = build_application(settings)

    assert isinstance(app.monitor, TransactionMonitor)
    assert app.monitor.config.confirmation_threshold == 2
    assert app.notifier.enabled
    assert app.provider.api_url == "https://api.testnet.hiro.so"
    engine = app.monitor.store.session_factory.kw["bind"]
    assert {"transactions", "payments", "users"} <= set(inspect(engine).get_table_names())
    await app.close()


def test_signal_handlers_stop_all(mocker):
    loop = MagicMock()
    mocker.patch("sbtc_monitor.app.asyncio.get_running_loop", return_value=loop)
    monitor = MagicMock(spec=TransactionMonitor)

    install_signal_handlers(monitor)

    registered = {call.args[0]: call.args[1:] for call in loop.add_signal_handler.call_args_list}
    assert set(registered) == {signal.SIGINT, signal.SIGTERM}
    callback, signame = registered[signal.SIGTERM]
    callback(signame)
    monitor.stop_all.assert_called_once()
