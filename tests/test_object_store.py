"""
Tests for object store adapters
"""
import os
from unittest.mock import patch

import pytest

from snapchain.blockchain.storage.object_store import FileBackedObjectStore, InMemoryObjectStore
from snapchain.protocol.types.common import ObjectConflict, ObjectStoreError

BUCKET = "storage_logs_snapshots"


@pytest.fixture(params=["file", "memory"])
def any_store(request, tmp_path):
    if request.param == "file":
        return FileBackedObjectStore(str(tmp_path / "artifacts"))
    return InMemoryObjectStore()


def test_put_get_exists(any_store):
    key = any_store.put(BUCKET, "part_0000.json", b"{}")
    assert key == "part_0000.json"
    assert any_store.exists(BUCKET, key)
    assert any_store.get(BUCKET, key) == b"{}"


def test_missing_object(any_store):
    assert not any_store.exists(BUCKET, "missing.json")
    with pytest.raises(FileNotFoundError):
        any_store.get(BUCKET, "missing.json")


@pytest.mark.parametrize("key", ["", "../escape", "a/b", ".."])
def test_invalid_keys_rejected(any_store, key):
    with pytest.raises(ValueError):
        any_store.put(BUCKET, key, b"x")


def test_file_layout(tmp_path):
    store = FileBackedObjectStore(str(tmp_path))
    store.put(BUCKET, "chunk.json", b"data")
    assert (tmp_path / BUCKET / "chunk.json").read_bytes() == b"data"
    # No temp files left behind
    assert os.listdir(tmp_path / BUCKET) == ["chunk.json"]


def test_failed_write_is_wrapped_and_cleaned_up(tmp_path):
    store = FileBackedObjectStore(str(tmp_path))
    with patch("snapchain.blockchain.storage.object_store.os.link", side_effect=OSError("disk full")):
        with pytest.raises(ObjectStoreError, match="disk full"):
            store.put(BUCKET, "chunk.json", b"data")

    assert not store.exists(BUCKET, "chunk.json")
    assert os.listdir(tmp_path / BUCKET) == []


def test_identical_put_is_noop(any_store):
    any_store.put(BUCKET, "chunk.json", b"same")
    assert any_store.put(BUCKET, "chunk.json", b"same") == "chunk.json"
    assert any_store.get(BUCKET, "chunk.json") == b"same"


def test_stored_object_is_never_replaced(any_store):
    any_store.put(BUCKET, "chunk.json", b"first")
    with pytest.raises(ObjectConflict):
        any_store.put(BUCKET, "chunk.json", b"second")
    assert any_store.get(BUCKET, "chunk.json") == b"first"


def test_conflicting_write_leaves_no_temp_files(tmp_path):
    store = FileBackedObjectStore(str(tmp_path))
    store.put(BUCKET, "chunk.json", b"first")
    with pytest.raises(ObjectConflict):
        store.put(BUCKET, "chunk.json", b"second")
    assert os.listdir(tmp_path / BUCKET) == ["chunk.json"]
