# MIT License
# Copyright (c) 2025 Hashborn

from typing import Optional, List, Tuple, Union
import time
import logging
import threading
from ...protocol.types.storage import StorageWrite
from ...protocol.crypto.hash import hash_storage_key
from ..storage.db import StorageDB
from .state import StorageState

logger = logging.getLogger(__name__)

WriteLike = Union[StorageWrite, Tuple[str, str, str]]


class Blockchain:
    """
    Storage-log ledger.

    Writes are grouped into miniblocks, miniblocks into L1 batches. The newest
    batch is open until sealed; once sealed no further miniblock is attributed
    to it.
    """

    def __init__(self, db_path: str):
        self.db = StorageDB(db_path)
        self._lock = threading.RLock()
        self.state = StorageState(self.db)
        self._load_chain_state()

    def _load_chain_state(self):
        last_miniblock = self.db.get_last_miniblock_number()
        self.next_miniblock_number = 0 if last_miniblock is None else last_miniblock + 1

        open_batch = self.db.get_open_l1_batch_number()
        if open_batch is None:
            sealed = self.db.get_sealed_l1_batch_number()
            open_batch = 0 if sealed is None else sealed + 1
            self.db.insert_l1_batch(open_batch, int(time.time()))
        self.open_l1_batch_number = open_batch

        if last_miniblock is None:
            logger.info("Chain initialized empty (genesis batch open)")
        else:
            logger.info(
                f"Chain initialized at miniblock {last_miniblock}, open L1 batch {self.open_l1_batch_number}"
            )

    # --- Thread-safe wrappers ---
    def add_miniblock(self, writes: List[WriteLike]) -> int:
        with self._lock:
            return self._add_miniblock_impl(writes)

    def seal_l1_batch(self) -> int:
        with self._lock:
            return self._seal_l1_batch_impl()

    def _add_miniblock_impl(self, writes: List[WriteLike]) -> int:
        number = self.next_miniblock_number
        logs = []
        for operation_number, write in enumerate(writes):
            if not isinstance(write, StorageWrite):
                address, key, value = write
                write = StorageWrite(address=address, key=key, value=value)
            hashed_key = hash_storage_key(write.address, write.key)
            logs.append((hashed_key, write.address, write.key, write.value, operation_number))

        self.db.insert_miniblock(number, self.open_l1_batch_number, int(time.time()), logs)
        self.next_miniblock_number = number + 1
        logger.debug(f"Miniblock {number} added to L1 batch {self.open_l1_batch_number} ({len(logs)} writes)")
        return number

    def _seal_l1_batch_impl(self) -> int:
        number = self.open_l1_batch_number
        # Every batch ends with a miniblock, even if it carries no writes
        if self.db.get_miniblock_range_of_l1_batch(number) is None:
            self._add_miniblock_impl([])

        self.db.seal_l1_batch(number)
        self.db.insert_l1_batch(number + 1, int(time.time()))
        self.open_l1_batch_number = number + 1
        logger.info(f"Sealed L1 batch {number}")
        return number

    # --- Queries ---
    def get_sealed_l1_batch_number(self) -> Optional[int]:
        return self.db.get_sealed_l1_batch_number()

    def get_miniblock_range_of_l1_batch(self, l1_batch_number: int) -> Optional[Tuple[int, int]]:
        return self.db.get_miniblock_range_of_l1_batch(l1_batch_number)

    def get_storage_at(self, address: str, key: str, miniblock_number: Optional[int] = None) -> str:
        """Point-in-time storage read; defaults to the latest miniblock."""
        if miniblock_number is None:
            miniblock_number = self.next_miniblock_number - 1
        return self.state.get_storage_at(address, key, miniblock_number)

    @property
    def last_miniblock_number(self) -> int:
        return self.next_miniblock_number - 1
