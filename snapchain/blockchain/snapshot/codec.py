# MIT License
# Copyright (c) 2025 Hashborn

"""
Snapshot Chunk Codec

Chunks are canonical JSON documents (sorted keys, compact separators) that
carry their own SHA256 hash. Optionally gzip-compressed with a fixed mtime, so
encoding the same chunk twice yields identical bytes either way.
"""

import gzip
import json
import zlib
from typing import List, Sequence

from pydantic import ValidationError as PydanticValidationError

from .types import SnapshotCheckpoint, SnapshotStorageLogsChunk
from ...protocol.types.common import MalformedChunk, ChunkEncoding
from ...protocol.types.storage import SnapshotStorageLog
from ...protocol.crypto.hash import sha256_hex
from ...protocol.config.params import SNAPSHOT_CHUNK_VERSION

GZIP_MAGIC = b"\x1f\x8b"


def chunk_filename(l1_batch_number: int, chunk_index: int, compressed: bool = False) -> str:
    """Object store key of a storage logs chunk, derived from checkpoint + chunk index only."""
    encoding = ChunkEncoding.JSON_GZIP if compressed else ChunkEncoding.JSON
    return f"snapshot_l1_batch_{l1_batch_number}_storage_logs_part_{chunk_index:04}.{encoding.value}"


def _canonical_json(doc: dict) -> bytes:
    return json.dumps(doc, sort_keys=True, separators=(",", ":"), ensure_ascii=True).encode("utf-8")


def calculate_chunk_hash(chunk: SnapshotStorageLogsChunk) -> str:
    """SHA256 of the canonical chunk document, excluding the hash field."""
    doc = chunk.model_dump(mode="json", by_alias=True, exclude={"hash"})
    return sha256_hex(_canonical_json(doc))


def encode_chunk(chunk: SnapshotStorageLogsChunk, compress: bool = False) -> bytes:
    doc = chunk.model_dump(mode="json", by_alias=True, exclude={"hash"})
    doc["hash"] = sha256_hex(_canonical_json(doc))
    data = _canonical_json(doc)
    if compress:
        data = gzip.compress(data, compresslevel=6, mtime=0)
    return data


def decode_chunk(data: bytes) -> SnapshotStorageLogsChunk:
    """
    Parses and verifies chunk bytes.

    Raises:
        MalformedChunk: truncated/corrupt bytes, schema mismatch, unsupported
            version or hash mismatch
    """
    if data[:2] == GZIP_MAGIC:
        try:
            data = gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as e:
            raise MalformedChunk(f"Corrupt gzip stream: {e}") from e

    try:
        doc = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedChunk(f"Chunk is not valid JSON: {e}") from e

    if not isinstance(doc, dict):
        raise MalformedChunk(f"Chunk document must be an object, got {type(doc).__name__}")

    version = doc.get("version")
    if version != SNAPSHOT_CHUNK_VERSION:
        raise MalformedChunk(f"Unsupported chunk version {version!r} (expected {SNAPSHOT_CHUNK_VERSION})")

    try:
        chunk = SnapshotStorageLogsChunk.model_validate(doc)
    except PydanticValidationError as e:
        raise MalformedChunk(f"Chunk does not match schema: {e}") from e

    if not chunk.hash:
        raise MalformedChunk("Chunk hash missing")
    expected = calculate_chunk_hash(chunk)
    if chunk.hash != expected:
        raise MalformedChunk(f"Chunk hash mismatch: stored {chunk.hash}, computed {expected}")

    return chunk


def encode_entries(
    entries: Sequence[SnapshotStorageLog],
    checkpoint: SnapshotCheckpoint,
    chunk_index: int = 0,
    compress: bool = False
) -> bytes:
    chunk = SnapshotStorageLogsChunk(
        lastL1BatchNumber=checkpoint.l1_batch_number,
        lastMiniblockNumber=checkpoint.miniblock_number,
        chunkIndex=chunk_index,
        storageLogs=list(entries),
    )
    return encode_chunk(chunk, compress=compress)


def decode_entries(data: bytes) -> List[SnapshotStorageLog]:
    return list(decode_chunk(data).storage_logs)
