import sqlite3
import threading
from contextlib import contextmanager
from typing import Optional, Tuple, List

# (hashed_key, address, key, value, operation_number)
StorageLogRow = Tuple[str, str, str, str, int]
# (address, key, value, l1_batch_number, enumeration_index)
SnapshotLogRow = Tuple[str, str, str, int, int]


class StorageDB:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.cursor = self.conn.cursor()
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        with self._lock:
            # WAL: readers on separate connections do not wait for the writer
            self.cursor.execute('PRAGMA journal_mode=WAL')
            # L1 batches: sealed = 1 once no further writes can be attributed to it
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS l1_batches (
                    number INTEGER PRIMARY KEY,
                    sealed INTEGER NOT NULL DEFAULT 0,
                    timestamp INTEGER NOT NULL
                )
            ''')
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS miniblocks (
                    number INTEGER PRIMARY KEY,
                    l1_batch_number INTEGER NOT NULL,
                    timestamp INTEGER NOT NULL
                )
            ''')
            # Storage log: append-only, one row per write
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS storage_logs (
                    hashed_key TEXT NOT NULL,
                    address TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    miniblock_number INTEGER NOT NULL,
                    operation_number INTEGER NOT NULL,
                    PRIMARY KEY (hashed_key, miniblock_number, operation_number)
                )
            ''')
            self.cursor.execute('''
                CREATE INDEX IF NOT EXISTS storage_logs_miniblock_idx
                ON storage_logs (miniblock_number)
            ''')
            # First write of every key, in enumeration order
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS initial_writes (
                    hashed_key TEXT PRIMARY KEY,
                    l1_batch_number INTEGER NOT NULL,
                    enumeration_index INTEGER NOT NULL UNIQUE
                )
            ''')
            # Snapshot registry (files: JSON array of object store keys)
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS snapshots (
                    l1_batch_number INTEGER PRIMARY KEY,
                    miniblock_number INTEGER NOT NULL,
                    files TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            ''')
            self.conn.commit()

    def close(self):
        with self._lock:
            self.conn.close()

    @contextmanager
    def _reader(self):
        """Short-lived read-only connection, independent of the writer lock."""
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute('PRAGMA query_only = ON')
            yield conn
        finally:
            conn.close()

    # --- L1 batch / miniblock methods ---
    def insert_l1_batch(self, number: int, timestamp: int):
        with self._lock:
            self.cursor.execute('INSERT INTO l1_batches (number, sealed, timestamp) VALUES (?, 0, ?)', (number, timestamp))
            self.conn.commit()

    def seal_l1_batch(self, number: int):
        with self._lock:
            self.cursor.execute('UPDATE l1_batches SET sealed = 1 WHERE number = ?', (number,))
            self.conn.commit()

    def get_sealed_l1_batch_number(self) -> Optional[int]:
        with self._lock:
            self.cursor.execute('SELECT MAX(number) FROM l1_batches WHERE sealed = 1')
            row = self.cursor.fetchone()
            return row[0] if row else None

    def get_open_l1_batch_number(self) -> Optional[int]:
        with self._lock:
            self.cursor.execute('SELECT MIN(number) FROM l1_batches WHERE sealed = 0')
            row = self.cursor.fetchone()
            return row[0] if row else None

    def get_last_miniblock_number(self) -> Optional[int]:
        with self._lock:
            self.cursor.execute('SELECT MAX(number) FROM miniblocks')
            row = self.cursor.fetchone()
            return row[0] if row else None

    def get_miniblock_range_of_l1_batch(self, l1_batch_number: int) -> Optional[Tuple[int, int]]:
        with self._lock:
            self.cursor.execute(
                'SELECT MIN(number), MAX(number) FROM miniblocks WHERE l1_batch_number = ?',
                (l1_batch_number,)
            )
            row = self.cursor.fetchone()
            if not row or row[0] is None:
                return None
            return row[0], row[1]

    def insert_miniblock(self, number: int, l1_batch_number: int, timestamp: int, logs: List[StorageLogRow]):
        """Inserts a miniblock together with its storage logs and initial writes (one transaction)."""
        with self._lock:
            try:
                self.cursor.execute(
                    'INSERT INTO miniblocks (number, l1_batch_number, timestamp) VALUES (?, ?, ?)',
                    (number, l1_batch_number, timestamp)
                )
                self.cursor.execute('SELECT COALESCE(MAX(enumeration_index), 0) FROM initial_writes')
                next_index = self.cursor.fetchone()[0] + 1
                for hashed_key, address, key, value, operation_number in logs:
                    self.cursor.execute(
                        'INSERT INTO storage_logs (hashed_key, address, key, value, miniblock_number, operation_number) '
                        'VALUES (?, ?, ?, ?, ?, ?)',
                        (hashed_key, address, key, value, number, operation_number)
                    )
                    self.cursor.execute(
                        'INSERT OR IGNORE INTO initial_writes (hashed_key, l1_batch_number, enumeration_index) '
                        'VALUES (?, ?, ?)',
                        (hashed_key, l1_batch_number, next_index)
                    )
                    if self.cursor.rowcount:
                        next_index += 1
                self.conn.commit()
            except sqlite3.Error:
                self.conn.rollback()
                raise

    # --- Storage log reads ---
    def get_storage_value(self, hashed_key: str, miniblock_number: int) -> Optional[str]:
        """Latest value written to hashed_key at or before miniblock_number."""
        with self._lock:
            self.cursor.execute(
                'SELECT value FROM storage_logs WHERE hashed_key = ? AND miniblock_number <= ? '
                'ORDER BY miniblock_number DESC, operation_number DESC LIMIT 1',
                (hashed_key, miniblock_number)
            )
            row = self.cursor.fetchone()
            return row[0] if row else None

    def count_distinct_storage_keys(self, miniblock_number: int) -> int:
        with self._reader() as conn:
            row = conn.execute(
                'SELECT COUNT(DISTINCT hashed_key) FROM storage_logs WHERE miniblock_number <= ?',
                (miniblock_number,)
            ).fetchone()
            return row[0]

    def get_storage_logs_chunk(
        self,
        miniblock_number: int,
        min_hashed_key: str,
        max_hashed_key: Optional[str]
    ) -> List[SnapshotLogRow]:
        """
        Latest write per key as of miniblock_number, for hashed keys in
        [min_hashed_key, max_hashed_key). max_hashed_key=None means open-ended.
        """
        upper_clause = 'AND hashed_key < ?' if max_hashed_key is not None else ''
        params = [miniblock_number, min_hashed_key]
        if max_hashed_key is not None:
            params.append(max_hashed_key)
        query = f'''
            SELECT s.address, s.key, s.value, m.l1_batch_number, iw.enumeration_index
            FROM (
                SELECT hashed_key, address, key, value, miniblock_number,
                       ROW_NUMBER() OVER (
                           PARTITION BY hashed_key
                           ORDER BY miniblock_number DESC, operation_number DESC
                       ) AS rn
                FROM storage_logs
                WHERE miniblock_number <= ? AND hashed_key >= ? {upper_clause}
            ) s
            JOIN miniblocks m ON m.number = s.miniblock_number
            JOIN initial_writes iw ON iw.hashed_key = s.hashed_key
            WHERE s.rn = 1
            ORDER BY s.hashed_key
        '''
        # Each chunk worker reads on its own connection
        with self._reader() as conn:
            return conn.execute(query, params).fetchall()

    # --- Snapshot registry methods ---
    def insert_snapshot(self, l1_batch_number: int, miniblock_number: int, files: str, created_at: str):
        """Raises sqlite3.IntegrityError if a row for l1_batch_number exists."""
        with self._lock:
            try:
                self.cursor.execute(
                    'INSERT INTO snapshots (l1_batch_number, miniblock_number, files, created_at) VALUES (?, ?, ?, ?)',
                    (l1_batch_number, miniblock_number, files, created_at)
                )
                self.conn.commit()
            except sqlite3.Error:
                self.conn.rollback()
                raise

    def get_snapshot(self, l1_batch_number: int) -> Optional[Tuple[int, int, str, str]]:
        with self._lock:
            self.cursor.execute(
                'SELECT l1_batch_number, miniblock_number, files, created_at FROM snapshots WHERE l1_batch_number = ?',
                (l1_batch_number,)
            )
            row = self.cursor.fetchone()
            return row if row else None

    def get_all_snapshots(self) -> List[Tuple[int, int, str]]:
        """Returns (l1_batch_number, miniblock_number, created_at), newest first."""
        with self._lock:
            self.cursor.execute(
                'SELECT l1_batch_number, miniblock_number, created_at FROM snapshots ORDER BY l1_batch_number DESC'
            )
            return self.cursor.fetchall()

    def get_newest_snapshot_l1_batch(self) -> Optional[int]:
        with self._lock:
            self.cursor.execute('SELECT MAX(l1_batch_number) FROM snapshots')
            row = self.cursor.fetchone()
            return row[0] if row else None
