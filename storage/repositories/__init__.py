"""
Repository Layer.

Data access for verified grants and volume snapshots. All
database errors surface as RepositoryException subclasses.
"""

from storage.repositories.exceptions import (
    ConnectionError,
    DuplicateRecordError,
    IntegrityError,
    QueryError,
    RepositoryException,
    VerifiedGrantConflictError,
)
from storage.repositories.grants import VerifiedGrantRepository
from storage.repositories.snapshots import VolumeSnapshotRepository


__all__ = [
    "ConnectionError",
    "DuplicateRecordError",
    "IntegrityError",
    "QueryError",
    "RepositoryException",
    "VerifiedGrantConflictError",
    "VerifiedGrantRepository",
    "VolumeSnapshotRepository",
]
