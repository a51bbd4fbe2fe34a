# MIT License
# Copyright (c) 2025 Hashborn

"""
Snapshot Manager

Read side of committed snapshots: resolves chunk locations through the
registry, loads and decodes chunks from the object store, and verifies a
snapshot against the live ledger.
"""

import logging
from typing import Iterator, Set, Tuple

from .codec import decode_chunk
from .registry import SnapshotRegistry
from .types import SnapshotMetadata, SnapshotStorageLogsChunk
from ..core.state import StorageState
from ..storage.object_store import ObjectStore
from ...protocol.types.common import ChunkNotFound, MalformedChunk, SnapshotVerificationError
from ...protocol.types.storage import SnapshotStorageLog
from ...protocol.config.params import STORAGE_LOGS_SNAPSHOTS_BUCKET

logger = logging.getLogger(__name__)


class SnapshotManager:
    """
    Loads committed snapshots.

    Existence is always decided by the registry; the object store is only
    consulted for locations the registry hands out.
    """

    def __init__(
        self,
        registry: SnapshotRegistry,
        object_store: ObjectStore,
        bucket: str = STORAGE_LOGS_SNAPSHOTS_BUCKET
    ):
        """
        Initialize snapshot manager.

        Args:
            registry: Snapshot registry
            object_store: Store holding chunk files
            bucket: Bucket chunk files are stored in
        """
        self.registry = registry
        self.object_store = object_store
        self.bucket = bucket

    def get_snapshot(self, l1_batch_number: int) -> SnapshotMetadata:
        return self.registry.get(l1_batch_number)

    def load_chunk(self, l1_batch_number: int, chunk_index: int) -> SnapshotStorageLogsChunk:
        """
        Load and decode one chunk of a committed snapshot.

        Raises:
            NotFound: no snapshot for l1_batch_number
            ChunkNotFound: chunk_index out of range
            MalformedChunk: chunk bytes are corrupt or belong to another snapshot
        """
        metadata = self.registry.get(l1_batch_number)
        if chunk_index < 0 or chunk_index >= len(metadata.files):
            raise ChunkNotFound(l1_batch_number, chunk_index)
        return self._load_chunk(metadata, chunk_index)

    def _load_chunk(self, metadata: SnapshotMetadata, chunk_index: int) -> SnapshotStorageLogsChunk:
        location = metadata.files[chunk_index]
        chunk = decode_chunk(self.object_store.get(self.bucket, location))

        if (chunk.last_l1_batch_number != metadata.l1_batch_number
                or chunk.last_miniblock_number != metadata.miniblock_number
                or chunk.chunk_index != chunk_index):
            raise MalformedChunk(
                f"Chunk {location} describes L1 batch {chunk.last_l1_batch_number} / "
                f"miniblock {chunk.last_miniblock_number} / index {chunk.chunk_index}, expected "
                f"{metadata.l1_batch_number} / {metadata.miniblock_number} / {chunk_index}"
            )
        return chunk

    def iter_storage_logs(self, l1_batch_number: int) -> Iterator[SnapshotStorageLog]:
        """Yields every storage log of a snapshot, chunk by chunk."""
        metadata = self.registry.get(l1_batch_number)
        for chunk_index in range(len(metadata.files)):
            yield from self._load_chunk(metadata, chunk_index).storage_logs

    def verify_snapshot(self, l1_batch_number: int, state: StorageState) -> int:
        """
        Check a committed snapshot against the ledger.

        Every entry must match a point-in-time read at the snapshot miniblock,
        must not be newer than the snapshot batch, and must appear exactly
        once; together the entries must cover every key written up to the
        snapshot miniblock.

        Returns:
            Number of verified storage logs

        Raises:
            SnapshotVerificationError: on the first violation found
        """
        metadata = self.registry.get(l1_batch_number)
        seen: Set[Tuple[str, str]] = set()

        for log in self.iter_storage_logs(l1_batch_number):
            slot = (log.key.address, log.key.key)
            if slot in seen:
                raise SnapshotVerificationError(f"Duplicate storage log for {slot[0]}/{slot[1]}")
            seen.add(slot)

            if log.l1_batch_number > metadata.l1_batch_number:
                raise SnapshotVerificationError(
                    f"Storage log {slot[0]}/{slot[1]} written in L1 batch {log.l1_batch_number}, "
                    f"after snapshot batch {metadata.l1_batch_number}"
                )

            expected = state.get_storage_at(slot[0], slot[1], metadata.miniblock_number)
            if log.value != expected:
                raise SnapshotVerificationError(
                    f"Value mismatch for {slot[0]}/{slot[1]}: snapshot {log.value}, "
                    f"chain {expected} at miniblock {metadata.miniblock_number}"
                )

        expected_count = state.count_storage_keys(metadata.miniblock_number)
        if len(seen) != expected_count:
            raise SnapshotVerificationError(
                f"Snapshot has {len(seen)} storage logs, chain has {expected_count} keys "
                f"at miniblock {metadata.miniblock_number}"
            )

        logger.info(f"Snapshot for L1 batch {l1_batch_number} verified: {len(seen)} storage logs")
        return len(seen)
