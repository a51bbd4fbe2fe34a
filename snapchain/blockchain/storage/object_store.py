# MIT License
# Copyright (c) 2025 Hashborn

"""
Object Store Adapter

Durable blob storage keyed by (bucket, key). Objects are write-once: a key,
once stored, is never modified in place.
"""

import os
import logging
import tempfile
import threading
from pathlib import Path
from typing import Dict, Tuple

from ...protocol.types.common import ObjectConflict, ObjectStoreError

logger = logging.getLogger(__name__)


def _check_key(key: str):
    if not key or "/" in key or "\\" in key or key in (".", ".."):
        raise ValueError(f"Invalid object key: {key!r}")


class ObjectStore:
    """Minimal blob store interface consumed by the snapshot creator and API."""

    def put(self, bucket: str, key: str, data: bytes) -> str:
        """
        Stores data and returns the key it is addressable by.

        Putting the same bytes again is a no-op. Raises ObjectConflict if the
        key already holds different bytes.
        """
        raise NotImplementedError

    def get(self, bucket: str, key: str) -> bytes:
        """Returns stored bytes. Raises FileNotFoundError if the object is absent."""
        raise NotImplementedError

    def exists(self, bucket: str, key: str) -> bool:
        raise NotImplementedError


class FileBackedObjectStore(ObjectStore):
    """
    Stores objects as files under <base_path>/<bucket>/<key>.

    Writes go to a temporary file in the same directory and are hard-linked
    into place, so a reader never observes a partially written object and an
    existing object is never replaced.
    """

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path(self, bucket: str, key: str) -> Path:
        _check_key(bucket)
        _check_key(key)
        return self.base_path / bucket / key

    def put(self, bucket: str, key: str, data: bytes) -> str:
        path = self._path(bucket, key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", dir=path.parent)
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.link(tmp_name, path)
            except FileExistsError:
                if path.read_bytes() != data:
                    raise ObjectConflict(bucket, key)
                logger.debug(f"{bucket}/{key} already stored with identical contents")
            finally:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
        except OSError as e:
            raise ObjectStoreError(f"Failed to write {bucket}/{key}: {e}") from e

        logger.debug(f"Stored {len(data)} bytes at {path}")
        return key

    def get(self, bucket: str, key: str) -> bytes:
        path = self._path(bucket, key)
        if not path.exists():
            raise FileNotFoundError(f"Object {bucket}/{key} not found")
        return path.read_bytes()

    def exists(self, bucket: str, key: str) -> bool:
        return self._path(bucket, key).exists()


class InMemoryObjectStore(ObjectStore):
    """Thread-safe in-process store (tests and dry runs)."""

    def __init__(self):
        self.objects: Dict[Tuple[str, str], bytes] = {}
        self.lock = threading.Lock()

    def put(self, bucket: str, key: str, data: bytes) -> str:
        _check_key(bucket)
        _check_key(key)
        with self.lock:
            existing = self.objects.get((bucket, key))
            if existing is not None and existing != data:
                raise ObjectConflict(bucket, key)
            self.objects[(bucket, key)] = bytes(data)
        return key

    def get(self, bucket: str, key: str) -> bytes:
        with self.lock:
            if (bucket, key) not in self.objects:
                raise FileNotFoundError(f"Object {bucket}/{key} not found")
            return self.objects[(bucket, key)]

    def exists(self, bucket: str, key: str) -> bool:
        with self.lock:
            return (bucket, key) in self.objects
