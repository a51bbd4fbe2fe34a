# MIT License
# Copyright (c) 2025 Hashborn

"""
Snapshot Registry

Durable catalog of committed snapshots, one row per L1 batch. The registry is
the single source of truth for whether a snapshot exists.
"""

import json
import sqlite3
import logging
from datetime import datetime, timezone
from typing import List, Optional

from .types import SnapshotMetadata, SnapshotHeader
from ..storage.db import StorageDB
from ...protocol.types.common import AlreadyExists, NotFound

logger = logging.getLogger(__name__)

# sqlite INTEGER is a signed 64-bit value
MAX_L1_BATCH_NUMBER = 2 ** 63 - 1


def _parse_timestamp(raw: str) -> datetime:
    return datetime.fromisoformat(raw)


class SnapshotRegistry:
    def __init__(self, db: StorageDB):
        self.db = db

    def insert(self, metadata: SnapshotMetadata):
        """
        Commit a snapshot row.

        Raises:
            AlreadyExists: a snapshot for metadata.l1_batch_number is already committed
        """
        created_at = metadata.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)

        try:
            self.db.insert_snapshot(
                metadata.l1_batch_number,
                metadata.miniblock_number,
                json.dumps(metadata.files),
                created_at.isoformat()
            )
        except sqlite3.IntegrityError as e:
            raise AlreadyExists(metadata.l1_batch_number) from e

        logger.info(
            f"Registered snapshot for L1 batch {metadata.l1_batch_number} "
            f"(miniblock {metadata.miniblock_number}, {len(metadata.files)} files)"
        )

    def get(self, l1_batch_number: int) -> SnapshotMetadata:
        """
        Raises:
            NotFound: no snapshot for l1_batch_number
        """
        row = self._get_row(l1_batch_number)
        if row is None:
            raise NotFound(l1_batch_number)

        l1_batch, miniblock, files, created_at = row
        return SnapshotMetadata(
            l1_batch_number=l1_batch,
            miniblock_number=miniblock,
            files=json.loads(files),
            created_at=_parse_timestamp(created_at)
        )

    def list(self) -> List[SnapshotHeader]:
        """All snapshot summaries, sorted by L1 batch number (descending)."""
        return [
            SnapshotHeader(
                l1_batch_number=l1_batch,
                miniblock_number=miniblock,
                created_at=_parse_timestamp(created_at)
            )
            for l1_batch, miniblock, created_at in self.db.get_all_snapshots()
        ]

    def exists(self, l1_batch_number: int) -> bool:
        return self._get_row(l1_batch_number) is not None

    def _get_row(self, l1_batch_number: int):
        # Out-of-range numbers cannot be stored, so they cannot name a snapshot
        if not 0 <= l1_batch_number <= MAX_L1_BATCH_NUMBER:
            return None
        return self.db.get_snapshot(l1_batch_number)

    def latest(self) -> Optional[int]:
        """L1 batch number of the newest snapshot, or None if the registry is empty."""
        return self.db.get_newest_snapshot_l1_batch()
