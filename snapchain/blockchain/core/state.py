import sqlite3
from typing import List, Optional, Tuple

from ...protocol.types.common import SourceReadFailure
from ...protocol.types.storage import (
    ADDRESS_BYTES, WORD_BYTES, StorageKey, SnapshotStorageLog, normalize_hex
)
from ...protocol.crypto.hash import hash_storage_key
from ..storage.db import StorageDB

ZERO_WORD = "0x" + "00" * WORD_BYTES

# Half-open range of hashed keys; upper bound None = end of key space
HashedKeyRange = Tuple[str, Optional[str]]


class StorageState:
    """
    Read-only view over the storage log.

    All reads are point-in-time: they take a miniblock number and ignore any
    write recorded after it, so they can run while the chain keeps growing.
    """

    def __init__(self, db: StorageDB):
        self.db = db

    def get_storage_at(self, address: str, key: str, miniblock_number: int) -> str:
        """Value of (address, key) as of miniblock_number; zero word if never written."""
        address = normalize_hex(address, ADDRESS_BYTES)
        key = normalize_hex(key, WORD_BYTES)
        try:
            value = self.db.get_storage_value(hash_storage_key(address, key), miniblock_number)
        except sqlite3.Error as e:
            raise SourceReadFailure(f"Storage read failed for {address}/{key}: {e}") from e
        return value if value is not None else ZERO_WORD

    def count_storage_keys(self, miniblock_number: int) -> int:
        """Number of distinct keys written at or before miniblock_number."""
        try:
            return self.db.count_distinct_storage_keys(miniblock_number)
        except sqlite3.Error as e:
            raise SourceReadFailure(f"Failed to count storage keys at miniblock {miniblock_number}: {e}") from e

    def get_storage_logs_chunk(self, miniblock_number: int, key_range: HashedKeyRange) -> List[SnapshotStorageLog]:
        """Snapshot entries for every key in key_range as of miniblock_number, ordered by hashed key."""
        min_key, max_key = key_range
        try:
            rows = self.db.get_storage_logs_chunk(miniblock_number, min_key, max_key)
        except sqlite3.Error as e:
            raise SourceReadFailure(
                f"Failed to read storage logs in [{min_key}, {max_key}) at miniblock {miniblock_number}: {e}"
            ) from e

        return [
            SnapshotStorageLog(
                key=StorageKey.of(address, key),
                value=value,
                l1BatchNumber=l1_batch_number,
                enumerationIndex=enumeration_index,
            )
            for address, key, value, l1_batch_number, enumeration_index in rows
        ]
