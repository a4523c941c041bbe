"""
Verification Package.

============================================================
PURPOSE
============================================================
UID verification against affiliate exchange programs.

- VerificationConfig / ExchangeDescriptor: configuration
- VolumeSnapshotStore: append-only volume observations
- VolumeVerifier: policy and client dispatch
- TradingVolumeStatistics: per exchange volume statistics

============================================================
"""

from .config import (
    ExchangeDescriptor,
    VerificationConfig,
    load_verification_config,
)
from .snapshot_store import VolumeSnapshotStore
from .statistics import TradingVolumeStatistics, TradingVolumeStats, format_volume
from .verifier import VerificationResult, VolumeVerifier


__all__ = [
    "ExchangeDescriptor",
    "VerificationConfig",
    "load_verification_config",
    "VolumeSnapshotStore",
    "TradingVolumeStatistics",
    "TradingVolumeStats",
    "format_volume",
    "VerificationResult",
    "VolumeVerifier",
]
