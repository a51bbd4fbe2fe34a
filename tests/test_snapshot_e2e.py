"""
End-to-end: ledger -> snapshot creator -> file-backed object store -> HTTP API
"""
import json

import pytest
from fastapi.testclient import TestClient

from snapchain.blockchain.core.chain import Blockchain
from snapchain.blockchain.rpc import api
from snapchain.blockchain.snapshot.creator import SnapshotCreator
from snapchain.blockchain.snapshot.registry import SnapshotRegistry
from snapchain.blockchain.snapshot.snapshot_manager import SnapshotManager
from snapchain.blockchain.storage.object_store import FileBackedObjectStore
from snapchain.protocol.config.params import SnapshotsCreatorConfig, STORAGE_LOGS_SNAPSHOTS_BUCKET

from conftest import address, word


@pytest.fixture
def node(tmp_path):
    chain = Blockchain(str(tmp_path / "chain.db"))
    registry = SnapshotRegistry(chain.db)
    store = FileBackedObjectStore(str(tmp_path / "artifacts"))
    api.registry = registry
    api.snapshot_manager = SnapshotManager(registry, store)
    yield chain, registry, store, tmp_path / "artifacts"
    api.registry = None
    api.snapshot_manager = None
    chain.db.close()


def test_snapshot_lifecycle(node):
    chain, registry, store, base_path = node
    client = TestClient(api.app)
    creator = SnapshotCreator(
        chain, registry, store,
        SnapshotsCreatorConfig(storage_logs_chunk_size=10, concurrent_queries_count=4)
    )

    # Batches 0..41, each touching a few new slots and one hot slot
    for batch in range(42):
        chain.add_miniblock([(address(batch), word(k), word(batch * 10 + k)) for k in range(2)])
        chain.add_miniblock([(address(0), word(0), word(batch + 1000))])
        chain.seal_l1_batch()
    assert chain.get_sealed_l1_batch_number() == 41

    listed = [s["l1BatchNumber"] for s in client.get("/snapshots").json()["snapshots"]]
    assert 42 not in listed

    # Batch 42 sealed, then batch 43 keeps overwriting
    chain.add_miniblock([(address(42), word(0), word(4242)), (address(0), word(0), word(9042))])
    chain.seal_l1_batch()
    chain.add_miniblock([(address(0), word(0), word(9043)), (address(42), word(0), word(4343))])

    metadata = creator.create_snapshot()
    assert metadata.l1_batch_number == 42

    listed = [s["l1BatchNumber"] for s in client.get("/snapshots").json()["snapshots"]]
    assert listed == [42]

    body = client.get("/snapshots/42").json()
    assert body["l1BatchNumber"] == 42
    assert body["miniblockNumber"] == chain.get_miniblock_range_of_l1_batch(42)[1]
    assert body["storageLogsFiles"]

    # Chunk files are plain JSON under <base>/<bucket>/<key>
    entries = []
    for location in body["storageLogsFiles"]:
        doc = json.loads((base_path / STORAGE_LOGS_SNAPSHOTS_BUCKET / location).read_text())
        entries.extend(doc["storageLogs"])

    assert len(entries) == chain.state.count_storage_keys(body["miniblockNumber"])
    for entry in entries:
        slot = (entry["key"]["account"]["address"], entry["key"]["key"])
        assert entry["value"] == chain.get_storage_at(slot[0], slot[1], body["miniblockNumber"])
        assert entry["l1BatchNumber"] <= 42

    by_slot = {(e["key"]["account"]["address"], e["key"]["key"]): e for e in entries}
    assert by_slot[(address(0), word(0))]["value"] == word(9042)
    assert by_slot[(address(42), word(0))]["value"] == word(4242)

    # Nothing newer sealed yet: a second run is a no-op
    assert creator.create_snapshot() is None
    assert [s.l1_batch_number for s in registry.list()] == [42]
