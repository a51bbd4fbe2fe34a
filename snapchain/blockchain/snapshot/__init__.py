# MIT License
# Copyright (c) 2025 Hashborn

"""
State Snapshot System

Creates chunked storage log snapshots at sealed L1 batches, catalogs them in
the snapshot registry and loads them back.
"""

from .creator import SnapshotCreator
from .registry import SnapshotRegistry
from .snapshot_manager import SnapshotManager
from .types import SnapshotCheckpoint, SnapshotMetadata, SnapshotHeader, SnapshotStorageLogsChunk

__all__ = [
    "SnapshotCreator",
    "SnapshotRegistry",
    "SnapshotManager",
    "SnapshotCheckpoint",
    "SnapshotMetadata",
    "SnapshotHeader",
    "SnapshotStorageLogsChunk",
]
