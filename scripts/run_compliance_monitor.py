"""
Scripts - Run Compliance Monitor.

============================================================
RESPONSIBILITY
============================================================
Runs the trading volume compliance monitor as a daemon.

- Reloads configuration on every run
- Notifies through Telegram and/or Discord when
  TELEGRAM_BOT_TOKEN / DISCORD_BOT_TOKEN are set
- Stops cleanly on SIGINT / SIGTERM

============================================================
USAGE
============================================================
python -m scripts.run_compliance_monitor

Options:
  --schedule EXPR      Cron expression (default "0 0 * * *", UTC)
  --run-once           Run one compliance pass and exit
  --config PATH        Configuration file
  --database-url URL   Override DATABASE_URL
  --log-level LEVEL    Logging level (default INFO)

============================================================
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import List

from dotenv import load_dotenv

from compliance.monitor import TradingVolumeMonitor
from compliance.notifiers import DiscordGrantNotifier, GrantNotifier, TelegramGrantNotifier
from compliance.scheduler import DEFAULT_SCHEDULE, CronExpression
from core.exceptions import VolumeGateException
from scripts import setup_logging
from storage.database import create_session_factory, initialize_database
from verification.config import load_verification_config
from verification.snapshot_store import VolumeSnapshotStore


logger = logging.getLogger("compliance_monitor")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Trading volume compliance monitor")
    parser.add_argument("--schedule", default=DEFAULT_SCHEDULE, help="Cron expression (UTC)")
    parser.add_argument("--run-once", action="store_true", help="Run one pass and exit")
    parser.add_argument("--config", help="Configuration file path")
    parser.add_argument("--database-url", help="Database URL")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    return parser.parse_args(argv)


def build_notifiers() -> List[GrantNotifier]:
    notifiers: List[GrantNotifier] = []
    for notifier in (TelegramGrantNotifier(), DiscordGrantNotifier()):
        if notifier.enabled:
            notifiers.append(notifier)
    if not notifiers:
        logger.warning("No notifiers configured; warnings cannot be delivered")
    return notifiers


async def run(args: argparse.Namespace) -> int:
    # Fail fast on a bad expression or configuration before scheduling.
    CronExpression.parse(args.schedule)
    load_verification_config(args.config)

    engine = initialize_database(args.database_url)
    session_factory = create_session_factory(engine)
    notifiers = build_notifiers()

    monitor = TradingVolumeMonitor(
        session_factory=session_factory,
        snapshot_store=VolumeSnapshotStore(session_factory),
        config_provider=lambda: load_verification_config(args.config),
        notifiers=notifiers,
        schedule=args.schedule,
    )

    try:
        if args.run_once:
            report = await monitor.run_now()
            print(json.dumps(report.to_dict(), indent=2))
            return 0 if report.error is None else 1

        stop_event = asyncio.Event()
        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, stop_event.set)

        monitor.start()
        logger.info("Compliance monitor running. Press Ctrl+C to stop.")
        await stop_event.wait()
        return 0
    finally:
        await monitor.stop()
        for notifier in notifiers:
            await notifier.close()
        engine.dispose()


def main(argv=None) -> int:
    """Monitor entry point."""
    load_dotenv()
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0
    except VolumeGateException as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    except ValueError as e:
        logger.error(f"Invalid schedule: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
