# MIT License
# Copyright (c) 2025 Hashborn

import os
from typing import Dict, Optional

# Chunk document format version
SNAPSHOT_CHUNK_VERSION = 1

# Object store bucket holding storage log chunks
STORAGE_LOGS_SNAPSHOTS_BUCKET = "storage_logs_snapshots"


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return int(raw)

def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return float(raw)

def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class SnapshotsCreatorConfig:
    def __init__(self,
                 # Partitioning: max number of storage logs per chunk
                 storage_logs_chunk_size: int = 1_000_000,
                 # Number of chunk workers running in parallel
                 concurrent_queries_count: int = 25,
                 # Retry policy for chunk writes
                 max_chunk_write_attempts: int = 5,
                 initial_backoff_seconds: float = 0.1,
                 max_backoff_seconds: float = 5.0,
                 # Whole-run deadline (None = unbounded)
                 deadline_seconds: Optional[float] = None,
                 compress_chunks: bool = False):
        if storage_logs_chunk_size <= 0:
            raise ValueError("storage_logs_chunk_size must be positive")
        if concurrent_queries_count <= 0:
            raise ValueError("concurrent_queries_count must be positive")
        if max_chunk_write_attempts <= 0:
            raise ValueError("max_chunk_write_attempts must be positive")
        self.storage_logs_chunk_size = storage_logs_chunk_size
        self.concurrent_queries_count = concurrent_queries_count
        self.max_chunk_write_attempts = max_chunk_write_attempts
        self.initial_backoff_seconds = initial_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.deadline_seconds = deadline_seconds
        self.compress_chunks = compress_chunks

    @classmethod
    def from_env(cls) -> 'SnapshotsCreatorConfig':
        """Builds config from SNAPSHOTS_CREATOR_* environment variables."""
        return cls(
            storage_logs_chunk_size=_env_int("SNAPSHOTS_CREATOR_STORAGE_LOGS_CHUNK_SIZE", 1_000_000),
            concurrent_queries_count=_env_int("SNAPSHOTS_CREATOR_CONCURRENT_QUERIES_COUNT", 25),
            max_chunk_write_attempts=_env_int("SNAPSHOTS_CREATOR_MAX_CHUNK_WRITE_ATTEMPTS", 5),
            initial_backoff_seconds=_env_float("SNAPSHOTS_CREATOR_INITIAL_BACKOFF_SECONDS", 0.1),
            max_backoff_seconds=_env_float("SNAPSHOTS_CREATOR_MAX_BACKOFF_SECONDS", 5.0),
            deadline_seconds=_env_float("SNAPSHOTS_CREATOR_DEADLINE_SECONDS", None),
            compress_chunks=_env_bool("SNAPSHOTS_CREATOR_COMPRESS_CHUNKS", False),
        )


class ObjectStoreConfig:
    def __init__(self,
                 file_backed_base_path: str = "artifacts",
                 bucket: str = STORAGE_LOGS_SNAPSHOTS_BUCKET):
        self.file_backed_base_path = file_backed_base_path
        self.bucket = bucket

    @classmethod
    def from_env(cls) -> 'ObjectStoreConfig':
        return cls(
            file_backed_base_path=os.environ.get("OBJECT_STORE_FILE_BACKED_BASE_PATH", "artifacts"),
            bucket=os.environ.get("OBJECT_STORE_SNAPSHOTS_BUCKET", STORAGE_LOGS_SNAPSHOTS_BUCKET),
        )


class ApiConfig:
    def __init__(self, host: str = "0.0.0.0", port: int = 3071):
        self.host = host
        self.port = port


# Presets used by the node CLI
PRESETS: Dict[str, SnapshotsCreatorConfig] = {
    "devnet": SnapshotsCreatorConfig(
        storage_logs_chunk_size=1_000,
        concurrent_queries_count=4,
        max_chunk_write_attempts=3,
        initial_backoff_seconds=0.05,
        max_backoff_seconds=1.0,
    ),
    "mainnet": SnapshotsCreatorConfig(
        storage_logs_chunk_size=1_000_000,
        concurrent_queries_count=25,
        max_chunk_write_attempts=5,
        deadline_seconds=6 * 3600,
        compress_chunks=True,
    ),
}
