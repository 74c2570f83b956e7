"""Storage layer for published render snapshots."""

from .snapshot_db import SnapshotDB, open_snapshot_db
from .schemas import SnapshotRecord

__all__ = [
    "SnapshotDB",
    "open_snapshot_db",
    "SnapshotRecord",
]
