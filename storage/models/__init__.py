"""
Storage Models Package.

============================================================
MODEL ORGANIZATION
============================================================

Verification (verification.py)
- VerifiedGrant
- VolumeSnapshot
"""

from storage.models.base import Base, TimestampMixin
from storage.models.verification import VerifiedGrant, VolumeSnapshot


__all__ = [
    "Base",
    "TimestampMixin",
    "VerifiedGrant",
    "VolumeSnapshot",
]
