"""
Scripts - Verify UID.

============================================================
RESPONSIBILITY
============================================================
One-shot verification of an exchange UID against the
configured policy. Prints the result as JSON.

============================================================
USAGE
============================================================
python -m scripts.verify_uid UID

Options:
  --exchange ID          Exchange id (default: configured default)
  --config PATH          Configuration file (default: CONFIG_PATH or config.json)
  --minimum-volume N     Minimum volume override
  --deposit-threshold N  Deposit threshold override
  --database-url URL     Override DATABASE_URL
  --log-level LEVEL      Logging level (default WARNING)

EXIT CODES:
- 0: Verification passed
- 1: Verification failed
- 2: Configuration or exchange error (exchange errors are
     printed as {"error": {...}} JSON)

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys

from core.exceptions import VolumeGateException
from exchange_clients.errors import ExchangeException
from scripts import setup_logging
from storage.database import create_session_factory, initialize_database
from verification.config import load_verification_config
from verification.snapshot_store import VolumeSnapshotStore
from verification.verifier import VolumeVerifier


logger = logging.getLogger("verify_uid")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Verify an exchange UID")
    parser.add_argument("uid", help="Exchange account UID")
    parser.add_argument("--exchange", help="Exchange id")
    parser.add_argument("--config", help="Configuration file path")
    parser.add_argument("--minimum-volume", type=float, help="Minimum volume override")
    parser.add_argument("--deposit-threshold", type=float, help="Deposit threshold override")
    parser.add_argument("--database-url", help="Database URL")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    config = load_verification_config(args.config)

    engine = initialize_database(args.database_url)
    store = VolumeSnapshotStore(create_session_factory(engine))
    verifier = VolumeVerifier(config, snapshot_store=store)

    try:
        result = await verifier.verify(
            args.uid,
            exchange_id=args.exchange,
            minimum_volume=args.minimum_volume,
            deposit_threshold=args.deposit_threshold,
        )
    finally:
        await verifier.close()
        engine.dispose()

    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0 if result.passed else 1


def main(argv=None) -> int:
    """Verification entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        return asyncio.run(run(args))
    except ExchangeException as e:
        logger.error(f"Verification could not be completed: {e}")
        print(json.dumps({"error": e.error.to_dict()}, indent=2))
        return 2
    except VolumeGateException as e:
        logger.error(f"Verification could not be completed: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
