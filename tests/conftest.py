import pytest

from snapchain.blockchain.core.chain import Blockchain
from snapchain.blockchain.snapshot.registry import SnapshotRegistry
from snapchain.blockchain.storage.object_store import InMemoryObjectStore
from snapchain.protocol.config.params import SnapshotsCreatorConfig
from snapchain.protocol.types.storage import h256


def address(i: int) -> str:
    return "0x" + format(i, "040x")


def word(i: int) -> str:
    return h256(i)


@pytest.fixture
def clean_chain(tmp_path):
    chain = Blockchain(str(tmp_path / "chain.db"))
    yield chain
    chain.db.close()


@pytest.fixture
def registry(clean_chain):
    return SnapshotRegistry(clean_chain.db)


@pytest.fixture
def store():
    return InMemoryObjectStore()


@pytest.fixture
def fast_config():
    """Small chunks, fast retries."""
    return SnapshotsCreatorConfig(
        storage_logs_chunk_size=4,
        concurrent_queries_count=3,
        max_chunk_write_attempts=3,
        initial_backoff_seconds=0.001,
        max_backoff_seconds=0.01,
    )
