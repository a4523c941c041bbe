"""
Scripts - Volume Statistics.

============================================================
RESPONSIBILITY
============================================================
Prints recorded and exchange reported trading volume per
exchange, or the lifetime volume of one UID.

============================================================
USAGE
============================================================
python -m scripts.volume_stats [EXCHANGE]

Options:
  --uid UID            Print the lifetime volume of one UID instead
  --json               Print the statistics as JSON
  --config PATH        Configuration file
  --database-url URL   Override DATABASE_URL
  --log-level LEVEL    Logging level (default WARNING)

EXIT CODES:
- 0: Statistics printed
- 2: Configuration or exchange error

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from core.exceptions import VolumeGateException
from exchange_clients.errors import ExchangeException
from scripts import setup_logging
from storage.database import create_session_factory, initialize_database
from verification.config import load_verification_config
from verification.snapshot_store import VolumeSnapshotStore
from verification.statistics import TradingVolumeStats, format_volume
from verification.verifier import VolumeVerifier


logger = logging.getLogger("volume_stats")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Trading volume statistics")
    parser.add_argument("exchange", nargs="?", help="Exchange id, or 'all' (default)")
    parser.add_argument("--uid", help="Report the lifetime volume of this UID")
    parser.add_argument("--json", action="store_true", help="Print JSON")
    parser.add_argument("--config", help="Configuration file path")
    parser.add_argument("--database-url", help="Database URL")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    return parser.parse_args(argv)


def render(stats: TradingVolumeStats, scope: str) -> str:
    """Plain text report, one block per exchange."""
    if not stats.exchanges:
        return f"No trading volume recorded for {scope}."

    lines = [f"Trading volume statistics ({scope})"]
    for entry in stats.exchanges:
        last_updated = entry.to_dict()["last_snapshot_at"] or "unknown"
        lines.append("")
        lines.append(f"{entry.name or entry.exchange}")
        lines.append(f"  Verified volume: {format_volume(entry.total_volume)} ({entry.account_count} accounts)")
        lines.append(f"  Last 30 days: {format_volume(entry.window_volume)}")
        lines.append(f"  Last updated: {last_updated}")
        if entry.exchange_total_available:
            lines.append(
                f"  Exchange total: {format_volume(entry.exchange_total_volume)} "
                f"({entry.exchange_invitee_count} invitees)"
            )
        elif entry.unavailable_reason:
            lines.append(f"  Exchange total: unavailable ({entry.unavailable_reason})")

    if len(stats.exchanges) > 1:
        lines.append("")
        lines.append(
            f"Overall: {format_volume(stats.grand_total_volume)} ({stats.grand_total_accounts} accounts)"
        )
        if stats.exchange_totals_available_count:
            lines.append(
                f"Overall exchange total: {format_volume(stats.grand_exchange_volume)} "
                f"({stats.grand_exchange_invitees} invitees, "
                f"{stats.exchange_totals_available_count} exchanges)"
            )
    return "\n".join(lines)


async def run(args: argparse.Namespace) -> int:
    config = load_verification_config(args.config)
    exchange_id: Optional[str] = args.exchange if args.exchange and args.exchange.lower() != "all" else None

    engine = initialize_database(args.database_url)
    store = VolumeSnapshotStore(create_session_factory(engine))
    verifier = VolumeVerifier(config, snapshot_store=store)

    try:
        if args.uid:
            volume = await verifier.get_lifetime_volume(args.uid, exchange_id)
            output = {"uid": args.uid, "exchange_id": exchange_id, "total_trading_volume": volume}
            print(json.dumps(output) if args.json else f"{args.uid}: {format_volume(volume)}")
            return 0

        stats = await verifier.get_trading_volume_stats(exchange_id)
    finally:
        await verifier.close()
        engine.dispose()

    if args.json:
        print(json.dumps(stats.to_dict(), indent=2))
    else:
        scope = "all exchanges"
        if exchange_id:
            meta = verifier.get_exchange_config(exchange_id) or {}
            scope = meta.get("description") or meta.get("name") or exchange_id
        print(render(stats, scope))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Statistics entry point."""
    load_dotenv()
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        return asyncio.run(run(args))
    except ExchangeException as e:
        logger.error(f"Statistics could not be collected: {e}")
        print(json.dumps({"error": e.error.to_dict()}, indent=2))
        return 2
    except VolumeGateException as e:
        logger.error(f"Statistics could not be collected: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
