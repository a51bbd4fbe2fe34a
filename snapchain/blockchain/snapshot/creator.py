# MIT License
# Copyright (c) 2025 Hashborn

"""
Snapshot Creator

Materializes the storage log at a sealed L1 batch into chunk files and
commits one registry row referencing all of them.

Visibility is all-or-nothing: the registry row is inserted only after every
chunk is durable. A run that fails (or crashes) before that leaves orphaned
chunk files and no visible snapshot.
"""

import math
import time
import sqlite3
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, FIRST_EXCEPTION, wait
from datetime import datetime, timezone
from typing import Dict, List, Optional

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .codec import chunk_filename, encode_chunk
from .registry import SnapshotRegistry
from .types import SnapshotCheckpoint, SnapshotChunk, SnapshotMetadata, SnapshotStorageLogsChunk
from ..core.chain import Blockchain
from ..core.state import HashedKeyRange
from ..storage.object_store import ObjectStore
from ..observability import metrics
from ...protocol.types.common import (
    AlreadyExists,
    CheckpointUnavailable,
    ChunkWriteFailure,
    ObjectConflict,
    ObjectStoreError,
    SnapshotDeadlineExceeded,
    SourceReadFailure,
)
from ...protocol.config.params import SnapshotsCreatorConfig, STORAGE_LOGS_SNAPSHOTS_BUCKET

logger = logging.getLogger(__name__)

KEY_SPACE_SIZE = 2 ** 256


def hashed_key_ranges(chunks_count: int) -> List[HashedKeyRange]:
    """
    Splits the hashed key space into chunks_count contiguous half-open ranges.
    The last range is open-ended.
    """
    if chunks_count <= 0:
        raise ValueError("chunks_count must be positive")
    bounds = [i * KEY_SPACE_SIZE // chunks_count for i in range(chunks_count)]
    ranges = []
    for i, lower in enumerate(bounds):
        upper = format(bounds[i + 1], "064x") if i + 1 < chunks_count else None
        ranges.append((format(lower, "064x"), upper))
    return ranges


class SnapshotCreator:
    """
    Creates storage log snapshots.

    The storage log is only read (point-in-time at the checkpoint miniblock),
    the object store is only appended to, and the registry is written once per
    successful run.
    """

    def __init__(
        self,
        chain: Blockchain,
        registry: SnapshotRegistry,
        object_store: ObjectStore,
        config: Optional[SnapshotsCreatorConfig] = None,
        bucket: str = STORAGE_LOGS_SNAPSHOTS_BUCKET
    ):
        self.chain = chain
        self.registry = registry
        self.object_store = object_store
        self.config = config or SnapshotsCreatorConfig()
        self.bucket = bucket

    def select_checkpoint(self) -> SnapshotCheckpoint:
        """
        Most recent sealed L1 batch, if it has no snapshot yet.

        Raises:
            CheckpointUnavailable: nothing sealed, or the newest sealed batch is already snapshotted
            SourceReadFailure: the ledger could not be read
        """
        try:
            sealed = self.chain.get_sealed_l1_batch_number()
            if sealed is None:
                raise CheckpointUnavailable("No sealed L1 batch yet")

            latest_snapshot = self.registry.latest()
            if latest_snapshot is not None and latest_snapshot >= sealed:
                raise CheckpointUnavailable(
                    f"Snapshot for L1 batch {latest_snapshot} already exists (newest sealed batch is {sealed})"
                )

            miniblock_range = self.chain.get_miniblock_range_of_l1_batch(sealed)
        except sqlite3.Error as e:
            raise SourceReadFailure(f"Failed to select snapshot checkpoint: {e}") from e

        if miniblock_range is None:
            raise SourceReadFailure(f"Sealed L1 batch {sealed} has no miniblocks")

        return SnapshotCheckpoint(l1_batch_number=sealed, miniblock_number=miniblock_range[1])

    def create_snapshot(self) -> Optional[SnapshotMetadata]:
        """
        Run one snapshot job.

        Returns:
            Metadata of the committed snapshot, or None if there was nothing
            new to snapshot (or a concurrent run committed the same batch first)

        Raises:
            SourceReadFailure, ChunkWriteFailure, SnapshotDeadlineExceeded:
                the run was aborted and nothing was committed
        """
        try:
            checkpoint = self.select_checkpoint()
        except CheckpointUnavailable as e:
            logger.info(f"No snapshot created: {e}")
            return None

        return self.create_snapshot_at(checkpoint)

    def create_snapshot_at(self, checkpoint: SnapshotCheckpoint) -> Optional[SnapshotMetadata]:
        started = time.monotonic()
        deadline = None
        if self.config.deadline_seconds is not None:
            deadline = started + self.config.deadline_seconds

        try:
            if self._snapshot_exists(checkpoint.l1_batch_number):
                logger.info(f"Snapshot for L1 batch {checkpoint.l1_batch_number} already exists, skipping")
                return None

            logger.info(
                f"Creating snapshot for L1 batch {checkpoint.l1_batch_number} "
                f"(miniblock {checkpoint.miniblock_number})..."
            )
            chunks = self._write_chunks(checkpoint, deadline)
            if deadline is not None and time.monotonic() > deadline:
                raise SnapshotDeadlineExceeded(
                    f"Snapshot for L1 batch {checkpoint.l1_batch_number} exceeded "
                    f"{self.config.deadline_seconds}s deadline before commit"
                )
        except Exception as e:
            metrics.record_snapshot_failed(type(e).__name__)
            logger.error(f"Snapshot for L1 batch {checkpoint.l1_batch_number} aborted: {e}")
            raise

        metadata = SnapshotMetadata(
            l1_batch_number=checkpoint.l1_batch_number,
            miniblock_number=checkpoint.miniblock_number,
            files=[chunk.stored_location for chunk in chunks],
            created_at=datetime.now(timezone.utc)
        )

        try:
            self.registry.insert(metadata)
        except AlreadyExists:
            # Another run committed this batch first; our chunk files are orphaned
            logger.warning(
                f"Snapshot for L1 batch {checkpoint.l1_batch_number} was committed concurrently, "
                f"discarding {len(chunks)} chunk files"
            )
            return None

        duration = time.monotonic() - started
        metrics.record_snapshot_committed(checkpoint.l1_batch_number, duration)
        logger.info(
            f"Snapshot for L1 batch {checkpoint.l1_batch_number} created: "
            f"{sum(c.entries_count for c in chunks)} storage logs in {len(chunks)} chunks, {duration:.2f}s"
        )
        return metadata

    def _snapshot_exists(self, l1_batch_number: int) -> bool:
        try:
            return self.registry.exists(l1_batch_number)
        except sqlite3.Error as e:
            raise SourceReadFailure(f"Failed to check registry for L1 batch {l1_batch_number}: {e}") from e

    def _write_chunks(self, checkpoint: SnapshotCheckpoint, deadline: Optional[float]) -> List[SnapshotChunk]:
        keys_count = self.chain.state.count_storage_keys(checkpoint.miniblock_number)
        chunks_count = max(1, math.ceil(keys_count / self.config.storage_logs_chunk_size))
        key_ranges = hashed_key_ranges(chunks_count)
        metrics.start_snapshot_metrics(chunks_count)
        logger.info(
            f"{keys_count} storage keys at miniblock {checkpoint.miniblock_number}, "
            f"splitting into {chunks_count} chunks"
        )

        cancelled = threading.Event()
        executor = ThreadPoolExecutor(
            max_workers=min(self.config.concurrent_queries_count, chunks_count),
            thread_name_prefix="snapshot-chunk"
        )
        try:
            futures = {
                executor.submit(self._process_chunk, checkpoint, index, key_range, cancelled): index
                for index, key_range in enumerate(key_ranges)
            }
            timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
            done, not_done = wait(futures, timeout=timeout, return_when=FIRST_EXCEPTION)

            results: Dict[int, SnapshotChunk] = {}
            for future in sorted(done, key=lambda f: futures[f]):
                error = future.exception()
                if error is not None:
                    cancelled.set()
                    raise error
                results[futures[future]] = future.result()

            if not_done:
                cancelled.set()
                raise SnapshotDeadlineExceeded(
                    f"{len(not_done)} of {chunks_count} chunks still pending after "
                    f"{self.config.deadline_seconds}s deadline"
                )
        finally:
            executor.shutdown(wait=not cancelled.is_set(), cancel_futures=True)

        chunks = [results[i] for i in range(chunks_count)]
        written = sum(c.entries_count for c in chunks)
        if written != keys_count:
            raise SourceReadFailure(
                f"Inconsistent read at miniblock {checkpoint.miniblock_number}: "
                f"expected {keys_count} storage logs, chunks contain {written}"
            )
        return chunks

    def _process_chunk(
        self,
        checkpoint: SnapshotCheckpoint,
        chunk_index: int,
        key_range: HashedKeyRange,
        cancelled: threading.Event
    ) -> SnapshotChunk:
        started = time.monotonic()
        entries = self.chain.state.get_storage_logs_chunk(checkpoint.miniblock_number, key_range)
        chunk = SnapshotStorageLogsChunk(
            lastL1BatchNumber=checkpoint.l1_batch_number,
            lastMiniblockNumber=checkpoint.miniblock_number,
            chunkIndex=chunk_index,
            storageLogs=entries
        )
        data = encode_chunk(chunk, compress=self.config.compress_chunks)
        key = chunk_filename(checkpoint.l1_batch_number, chunk_index, compressed=self.config.compress_chunks)

        location = self._put_with_retry(key, data, chunk_index, cancelled)

        metrics.record_chunk_processed(time.monotonic() - started)
        logger.debug(f"Chunk {chunk_index} written to {self.bucket}/{location} ({len(entries)} storage logs)")
        return SnapshotChunk(chunk_index=chunk_index, stored_location=location, entries_count=len(entries))

    def _put_with_retry(self, key: str, data: bytes, chunk_index: int, cancelled: threading.Event) -> str:
        log_retry = before_sleep_log(logger, logging.WARNING)

        def before_sleep(retry_state):
            metrics.chunk_write_retries_total.inc()
            log_retry(retry_state)

        retrying = Retrying(
            stop=stop_after_attempt(self.config.max_chunk_write_attempts),
            wait=wait_exponential(
                multiplier=self.config.initial_backoff_seconds,
                max=self.config.max_backoff_seconds
            ),
            retry=retry_if_exception_type((ObjectStoreError, OSError)),
            before_sleep=before_sleep,
            reraise=True,
        )

        try:
            for attempt in retrying:
                with attempt:
                    if cancelled.is_set():
                        raise ChunkWriteFailure(f"Chunk {chunk_index} cancelled", chunk_index=chunk_index)
                    return self.object_store.put(self.bucket, key, data)
        except ObjectConflict as e:
            raise ChunkWriteFailure(
                f"Chunk {chunk_index} ({key}) collides with a different stored chunk: {e}",
                chunk_index=chunk_index
            ) from e
        except (ObjectStoreError, OSError) as e:
            raise ChunkWriteFailure(
                f"Failed to write chunk {chunk_index} ({key}) after "
                f"{self.config.max_chunk_write_attempts} attempts: {e}",
                chunk_index=chunk_index
            ) from e
        raise ChunkWriteFailure(f"Retry loop for chunk {chunk_index} exited unexpectedly", chunk_index=chunk_index)
