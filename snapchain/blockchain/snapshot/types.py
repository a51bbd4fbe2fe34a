# MIT License
# Copyright (c) 2025 Hashborn

"""
Snapshot Data Structures
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime

from ...protocol.types.storage import SnapshotStorageLog
from ...protocol.config.params import SNAPSHOT_CHUNK_VERSION


class SnapshotCheckpoint(BaseModel):
    """
    Point-in-time boundary of a snapshot: miniblock_number is the last
    miniblock of l1_batch_number.
    """
    model_config = ConfigDict(frozen=True)

    l1_batch_number: int = Field(..., ge=0)
    miniblock_number: int = Field(..., ge=0)


class SnapshotStorageLogsChunk(BaseModel):
    """
    Chunk file document (what is written to the object store).
    """
    # Validated by alias only: the camelCase names are the document format
    model_config = ConfigDict(extra="forbid", frozen=True)

    version: int = Field(default=SNAPSHOT_CHUNK_VERSION, description="Chunk format version")
    last_l1_batch_number: int = Field(..., alias="lastL1BatchNumber", ge=0)
    last_miniblock_number: int = Field(..., alias="lastMiniblockNumber", ge=0)
    chunk_index: int = Field(..., alias="chunkIndex", ge=0)
    storage_logs: List[SnapshotStorageLog] = Field(..., alias="storageLogs")
    # SHA256 of the canonical document without this field
    hash: Optional[str] = Field(default=None, description="SHA256 of chunk contents")


class SnapshotChunk(BaseModel):
    """A chunk after it has been durably written."""
    chunk_index: int
    stored_location: str
    entries_count: int


class SnapshotMetadata(BaseModel):
    """
    Registry row: one per committed snapshot, never updated.
    """
    l1_batch_number: int = Field(..., description="L1 batch of the snapshot (unique)")
    miniblock_number: int = Field(..., description="Last miniblock of the L1 batch")
    files: List[str] = Field(..., description="Object store keys of every chunk, by chunk index")
    created_at: datetime = Field(..., description="Commit time (UTC)")


class SnapshotHeader(BaseModel):
    """Registry summary (no chunk locations)."""
    l1_batch_number: int
    miniblock_number: int
    created_at: datetime


# ═══════════════════════════════════════════════════════════════════
# RETRIEVAL API PAYLOADS
# ═══════════════════════════════════════════════════════════════════

class SnapshotSummaryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    l1_batch_number: int = Field(..., alias="l1BatchNumber")


class AllSnapshotsResponse(BaseModel):
    snapshots: List[SnapshotSummaryResponse]


class SnapshotResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    l1_batch_number: int = Field(..., alias="l1BatchNumber")
    miniblock_number: int = Field(..., alias="miniblockNumber")
    storage_logs_files: List[str] = Field(..., alias="storageLogsFiles")
