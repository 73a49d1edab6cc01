import argparse
import asyncio

from sbtc_monitor.app import build_application, install_signal_handlers
from sbtc_monitor.config import get_settings
from sbtc_monitor.monitor import MonitorConfig


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="sbtc-monitor",
        description="Watch Stacks transactions until they confirm, fail or time out.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    watch = sub.add_parser("watch", help="monitor one or more transaction ids")
    watch.add_argument("tx_ids", nargs="+", metavar="TXID")
    watch.add_argument(
        "--payment-id",
        help="payment to settle when the transaction resolves (single TXID only)",
    )
    watch.add_argument("--threshold", type=int, help="required confirmations")
    watch.add_argument("--max-retries", type=int, help="poll cycles before timing out")

    sub.add_parser("init-db", help="create the monitor tables")
    return parser.parse_args(argv)


async def watch(args: argparse.Namespace) -> None:
    settings = get_settings()
    overrides = {}
    if args.threshold is not None:
        overrides["confirmation_threshold"] = args.threshold
    if args.max_retries is not None:
        overrides["max_retries"] = args.max_retries

    app = build_application(settings, MonitorConfig.from_settings(settings, **overrides))
    install_signal_handlers(app.monitor)
    try:
        for tx_id in args.tx_ids:
            payment_id = args.payment_id if len(args.tx_ids) == 1 else None
            await app.monitor.start_monitoring(tx_id, payment_id)
        await app.monitor.join()
    finally:
        await app.close()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    if args.command == "init-db":
        # build_application creates the schema
        app = build_application()
        asyncio.run(app.close())
        return
    asyncio.run(watch(args))


if __name__ == "__main__":
    main()
