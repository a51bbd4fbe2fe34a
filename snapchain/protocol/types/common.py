# MIT License
# Copyright (c) 2025 Hashborn

from enum import Enum


class ChunkEncoding(str, Enum):
    JSON = "json"
    JSON_GZIP = "json.gz"


class ProtocolError(Exception):
    pass


# ═══════════════════════════════════════════════════════════════════
# SNAPSHOT ERRORS
# ═══════════════════════════════════════════════════════════════════

class SnapshotError(ProtocolError):
    """Base class for all snapshot creation / retrieval failures."""
    pass

class CheckpointUnavailable(SnapshotError):
    """No new sealed L1 batch to snapshot. Not a failure: callers treat it as a no-op."""
    pass

class SourceReadFailure(SnapshotError):
    """The ledger could not produce a consistent point-in-time read."""
    pass

class ChunkWriteFailure(SnapshotError):
    """A chunk could not be persisted after all retry attempts."""

    def __init__(self, message: str, chunk_index: int = None):
        super().__init__(message)
        self.chunk_index = chunk_index

class SnapshotDeadlineExceeded(SnapshotError):
    pass

class MalformedChunk(SnapshotError):
    """Chunk bytes are truncated, corrupted or do not match the chunk schema."""
    pass

class AlreadyExists(SnapshotError):
    def __init__(self, l1_batch_number: int):
        super().__init__(f"Snapshot for L1 batch {l1_batch_number} already exists")
        self.l1_batch_number = l1_batch_number

class NotFound(SnapshotError):
    def __init__(self, l1_batch_number: int):
        super().__init__(f"Snapshot for L1 batch {l1_batch_number} not found")
        self.l1_batch_number = l1_batch_number

class ObjectStoreError(ProtocolError):
    """Transient object store failure (retryable)."""
    pass

class ObjectConflict(ProtocolError):
    """A different object is already stored under the key (not retryable)."""

    def __init__(self, bucket: str, key: str):
        super().__init__(f"Object {bucket}/{key} already exists with different contents")
        self.bucket = bucket
        self.key = key

class ChunkNotFound(SnapshotError):
    def __init__(self, l1_batch_number: int, chunk_index: int):
        super().__init__(f"Snapshot for L1 batch {l1_batch_number} has no chunk {chunk_index}")
        self.l1_batch_number = l1_batch_number
        self.chunk_index = chunk_index

class SnapshotVerificationError(SnapshotError):
    """Committed snapshot content disagrees with the ledger."""
    pass
