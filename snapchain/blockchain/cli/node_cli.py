import argparse
import os
import sys
import json
import logging
from ...protocol.config.params import PRESETS, SnapshotsCreatorConfig, ObjectStoreConfig, ApiConfig
from ...protocol.types.common import SnapshotError
from ..core.chain import Blockchain
from ..storage.object_store import FileBackedObjectStore
from ..snapshot.creator import SnapshotCreator
from ..snapshot.registry import SnapshotRegistry
from ..snapshot.snapshot_manager import SnapshotManager

logger = logging.getLogger(__name__)


def _creator_config(args) -> SnapshotsCreatorConfig:
    base = PRESETS[args.preset] if args.preset else SnapshotsCreatorConfig.from_env()
    return SnapshotsCreatorConfig(
        storage_logs_chunk_size=args.chunk_size or base.storage_logs_chunk_size,
        concurrent_queries_count=args.concurrency or base.concurrent_queries_count,
        max_chunk_write_attempts=base.max_chunk_write_attempts,
        initial_backoff_seconds=base.initial_backoff_seconds,
        max_backoff_seconds=base.max_backoff_seconds,
        deadline_seconds=args.deadline if args.deadline is not None else base.deadline_seconds,
        compress_chunks=args.compress or base.compress_chunks,
    )

def _open_node(args):
    os.makedirs(args.datadir, exist_ok=True)
    chain = Blockchain(os.path.join(args.datadir, "chain.db"))
    store_config = ObjectStoreConfig.from_env()
    base_path = args.object_store_path or store_config.file_backed_base_path
    if not os.path.isabs(base_path):
        base_path = os.path.join(args.datadir, base_path)
    store = FileBackedObjectStore(base_path)
    registry = SnapshotRegistry(chain.db)
    return chain, registry, store, store_config.bucket

def cmd_create_snapshot(args) -> int:
    """Run the snapshot creator once and exit."""
    chain, registry, store, bucket = _open_node(args)
    creator = SnapshotCreator(chain, registry, store, _creator_config(args), bucket=bucket)
    try:
        metadata = creator.create_snapshot()
    except SnapshotError as e:
        logger.error(f"Snapshot creation failed: {e}")
        return 1
    finally:
        chain.db.close()

    if metadata is None:
        print("No new sealed L1 batch to snapshot.")
    else:
        print(f"Created snapshot for L1 batch {metadata.l1_batch_number} "
              f"(miniblock {metadata.miniblock_number}, {len(metadata.files)} files)")
    return 0

def cmd_list(args) -> int:
    chain, registry, _, _ = _open_node(args)
    try:
        snapshots = registry.list()
    finally:
        chain.db.close()
    print(json.dumps([s.model_dump(mode="json") for s in snapshots], indent=2))
    return 0

def cmd_verify(args) -> int:
    """Verify a committed snapshot against the local ledger."""
    chain, registry, store, bucket = _open_node(args)
    manager = SnapshotManager(registry, store, bucket=bucket)
    try:
        count = manager.verify_snapshot(args.l1_batch_number, chain.state)
    except SnapshotError as e:
        logger.error(f"Verification failed: {e}")
        return 1
    finally:
        chain.db.close()
    print(f"Snapshot for L1 batch {args.l1_batch_number} OK ({count} storage logs)")
    return 0

def cmd_serve(args) -> int:
    from ..rpc.api import start_rpc_server
    chain, registry, store, bucket = _open_node(args)
    api_config = ApiConfig(host=args.host, port=args.port)
    print(f"Snapshots API: {api_config.host}:{api_config.port}")
    start_rpc_server(registry, SnapshotManager(registry, store, bucket=bucket),
                     host=api_config.host, port=api_config.port)
    return 0

def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="SnapChain Node CLI")
    parser.add_argument("--datadir", default="./.snapchain", help="Data directory")
    parser.add_argument("--object-store-path", default=None,
                        help="File-backed object store root (default: $OBJECT_STORE_FILE_BACKED_BASE_PATH or <datadir>/artifacts)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    create_parser = subparsers.add_parser("create-snapshot", help="Snapshot the newest sealed L1 batch")
    create_parser.add_argument("--preset", choices=sorted(PRESETS), default=None, help="Config preset (default: environment)")
    create_parser.add_argument("--chunk-size", type=int, default=None, help="Max storage logs per chunk")
    create_parser.add_argument("--concurrency", type=int, default=None, help="Parallel chunk workers")
    create_parser.add_argument("--deadline", type=float, default=None, help="Abort after N seconds")
    create_parser.add_argument("--compress", action="store_true", help="gzip chunk files")

    subparsers.add_parser("list", help="List committed snapshots")

    verify_parser = subparsers.add_parser("verify", help="Verify a snapshot against the ledger")
    verify_parser.add_argument("l1_batch_number", type=int)

    serve_parser = subparsers.add_parser("serve", help="Run the snapshots API")
    serve_parser.add_argument("--host", default="0.0.0.0", help="API Host")
    serve_parser.add_argument("--port", type=int, default=3071, help="API Port")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s %(levelname)s: %(message)s',
        datefmt='%H:%M:%S'
    )

    if args.command == "create-snapshot":
        return cmd_create_snapshot(args)
    elif args.command == "list":
        return cmd_list(args)
    elif args.command == "verify":
        return cmd_verify(args)
    elif args.command == "serve":
        return cmd_serve(args)
    return 2

if __name__ == "__main__":
    sys.exit(main())
