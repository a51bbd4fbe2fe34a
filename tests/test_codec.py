"""
Tests for the snapshot chunk codec
"""
import gzip
import hashlib
import json

import pytest

from snapchain.blockchain.snapshot.codec import (
    chunk_filename, decode_chunk, decode_entries, encode_chunk, encode_entries
)
from snapchain.blockchain.snapshot.types import SnapshotCheckpoint, SnapshotStorageLogsChunk
from snapchain.protocol.types.common import MalformedChunk
from snapchain.protocol.types.storage import SnapshotStorageLog, StorageKey

from conftest import address, word

CHECKPOINT = SnapshotCheckpoint(l1_batch_number=42, miniblock_number=1337)


def make_entries(n: int):
    return [
        SnapshotStorageLog(
            key=StorageKey.of(address(i), word(i * 3)),
            value=word(i * 1000 + 7),
            l1BatchNumber=i % 40,
            enumerationIndex=i + 1,
        )
        for i in range(n)
    ]


@pytest.mark.parametrize("count", [0, 1, 25])
def test_entries_round_trip(count):
    entries = make_entries(count)
    assert decode_entries(encode_entries(entries, CHECKPOINT)) == entries


def test_chunk_round_trip_keeps_header():
    chunk = SnapshotStorageLogsChunk(
        lastL1BatchNumber=42,
        lastMiniblockNumber=1337,
        chunkIndex=3,
        storageLogs=make_entries(5),
    )
    decoded = decode_chunk(encode_chunk(chunk))
    assert decoded.last_l1_batch_number == 42
    assert decoded.last_miniblock_number == 1337
    assert decoded.chunk_index == 3
    assert decoded.storage_logs == chunk.storage_logs
    assert decoded.hash is not None


def test_encoding_is_deterministic():
    entries = make_entries(10)
    assert encode_entries(entries, CHECKPOINT) == encode_entries(list(entries), CHECKPOINT)
    assert encode_entries(entries, CHECKPOINT, compress=True) == encode_entries(entries, CHECKPOINT, compress=True)


def test_entry_order_is_preserved():
    entries = make_entries(6)
    reversed_entries = list(reversed(entries))
    assert decode_entries(encode_entries(reversed_entries, CHECKPOINT)) == reversed_entries


def test_compressed_chunk_is_detected():
    entries = make_entries(4)
    data = encode_entries(entries, CHECKPOINT, compress=True)
    assert data[:2] == b"\x1f\x8b"
    assert decode_entries(data) == entries
    assert gzip.decompress(data) == encode_entries(entries, CHECKPOINT)


def test_document_layout():
    doc = json.loads(encode_entries(make_entries(1), CHECKPOINT))
    assert doc["lastL1BatchNumber"] == 42
    assert doc["lastMiniblockNumber"] == 1337
    log = doc["storageLogs"][0]
    assert log["key"]["account"]["address"] == address(0)
    assert log["key"]["key"] == word(0)
    assert log["value"] == word(7)
    assert log["l1BatchNumber"] == 0
    assert log["enumerationIndex"] == 1


# ═══════════════════════════════════════════════════════════════════
# MALFORMED INPUT
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.parametrize("compress", [False, True])
def test_truncated_chunk_rejected(compress):
    data = encode_entries(make_entries(5), CHECKPOINT, compress=compress)
    with pytest.raises(MalformedChunk):
        decode_chunk(data[: len(data) // 2])


def test_empty_bytes_rejected():
    with pytest.raises(MalformedChunk):
        decode_chunk(b"")


def test_corrupted_value_rejected():
    data = encode_entries(make_entries(3), CHECKPOINT)
    original = word(1007).encode()
    tampered = word(1008).encode()
    assert original in data
    with pytest.raises(MalformedChunk, match="hash mismatch"):
        decode_chunk(data.replace(original, tampered))


def test_garbage_rejected():
    with pytest.raises(MalformedChunk):
        decode_chunk(b"\xff\xfe\x00garbage")
    with pytest.raises(MalformedChunk):
        decode_chunk(b"[1, 2, 3]")


def _reencode(doc: dict) -> bytes:
    return json.dumps(doc).encode()


def test_unknown_field_rejected():
    doc = json.loads(encode_entries(make_entries(2), CHECKPOINT))
    doc["storageLogs"][0]["comment"] = "unexpected"
    with pytest.raises(MalformedChunk):
        decode_chunk(_reencode(doc))


def test_missing_field_rejected():
    doc = json.loads(encode_entries(make_entries(2), CHECKPOINT))
    del doc["storageLogs"][1]["l1BatchNumber"]
    with pytest.raises(MalformedChunk):
        decode_chunk(_reencode(doc))

    doc = json.loads(encode_entries(make_entries(2), CHECKPOINT))
    del doc["hash"]
    with pytest.raises(MalformedChunk, match="hash missing"):
        decode_chunk(_reencode(doc))


def _rehash(doc: dict) -> bytes:
    """Re-encode with a hash that matches the edited document."""
    doc = {k: v for k, v in doc.items() if k != "hash"}
    canonical = json.dumps(doc, sort_keys=True, separators=(",", ":")).encode()
    doc["hash"] = hashlib.sha256(canonical).hexdigest()
    return json.dumps(doc).encode()


def test_missing_storage_logs_rejected():
    doc = json.loads(encode_entries(make_entries(2), CHECKPOINT))
    del doc["storageLogs"]
    with pytest.raises(MalformedChunk, match="schema"):
        decode_chunk(_rehash(doc))


def test_field_names_are_not_accepted_for_aliases():
    doc = json.loads(encode_entries(make_entries(2), CHECKPOINT))
    doc["storage_logs"] = doc.pop("storageLogs")
    with pytest.raises(MalformedChunk, match="schema"):
        decode_chunk(_rehash(doc))

    doc = json.loads(encode_entries(make_entries(2), CHECKPOINT))
    doc["storageLogs"][0]["l1_batch_number"] = doc["storageLogs"][0].pop("l1BatchNumber")
    with pytest.raises(MalformedChunk, match="schema"):
        decode_chunk(_rehash(doc))


def test_unsupported_version_rejected():
    doc = json.loads(encode_entries(make_entries(1), CHECKPOINT))
    doc["version"] = 99
    with pytest.raises(MalformedChunk, match="version"):
        decode_chunk(_reencode(doc))


def test_invalid_value_width_rejected():
    doc = json.loads(encode_entries(make_entries(1), CHECKPOINT))
    doc["storageLogs"][0]["value"] = "0x01"
    with pytest.raises(MalformedChunk):
        decode_chunk(_reencode(doc))


def test_chunk_filename():
    assert chunk_filename(42, 0) == "snapshot_l1_batch_42_storage_logs_part_0000.json"
    assert chunk_filename(42, 17, compressed=True) == "snapshot_l1_batch_42_storage_logs_part_0017.json.gz"
