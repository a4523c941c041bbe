"""
Scripts Package.

This package contains operational scripts for the verifier.

Scripts:
- bootstrap_db: Database initialization and maintenance
- verify_uid: One-shot UID verification
- run_compliance_monitor: Trading volume compliance daemon
- volume_stats: Per exchange trading volume statistics
"""

import logging


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
