from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from typing import Optional
from ..snapshot.registry import SnapshotRegistry
from ..snapshot.snapshot_manager import SnapshotManager
from ..snapshot.types import AllSnapshotsResponse, SnapshotResponse, SnapshotSummaryResponse
from ...protocol.types.common import NotFound, ChunkNotFound, MalformedChunk
import logging

logger = logging.getLogger(__name__)

app = FastAPI(title="SnapChain Snapshots API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)
registry: Optional[SnapshotRegistry] = None
snapshot_manager: Optional[SnapshotManager] = None


def _require_registry() -> SnapshotRegistry:
    if not registry:
        raise HTTPException(status_code=503, detail="Snapshot registry not initialized")
    return registry


@app.get("/snapshots", response_model=AllSnapshotsResponse)
async def list_snapshots():
    """
    List all committed snapshots (newest first).
    """
    reg = _require_registry()
    headers = reg.list()
    return AllSnapshotsResponse(
        snapshots=[SnapshotSummaryResponse(l1_batch_number=h.l1_batch_number) for h in headers]
    )

@app.get("/snapshots/{l1_batch_number}", response_model=SnapshotResponse)
async def get_snapshot(l1_batch_number: int):
    """
    Get a snapshot with the object store keys of all its storage log chunks.
    """
    reg = _require_registry()
    try:
        metadata = reg.get(l1_batch_number)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

    return SnapshotResponse(
        l1_batch_number=metadata.l1_batch_number,
        miniblock_number=metadata.miniblock_number,
        storage_logs_files=metadata.files
    )

@app.get("/snapshots/{l1_batch_number}/files/{chunk_index}")
async def get_snapshot_chunk(l1_batch_number: int, chunk_index: int):
    """
    Get the decoded contents of one storage log chunk.
    """
    _require_registry()
    if not snapshot_manager:
        raise HTTPException(status_code=503, detail="Snapshot storage not configured on this node")

    try:
        chunk = snapshot_manager.load_chunk(l1_batch_number, chunk_index)
    except (NotFound, ChunkNotFound) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (MalformedChunk, FileNotFoundError) as e:
        logger.error(f"Unreadable chunk {chunk_index} of snapshot {l1_batch_number}: {e}")
        raise HTTPException(status_code=500, detail=f"Snapshot chunk error: {str(e)}")

    return chunk.model_dump(mode="json", by_alias=True)

@app.get("/metrics")
async def get_metrics():
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
    from ..observability.metrics import metrics_registry, update_metrics

    update_metrics(registry)
    return Response(
        content=generate_latest(metrics_registry),
        media_type=CONTENT_TYPE_LATEST
    )

def start_rpc_server(registry_instance: SnapshotRegistry, manager_instance: Optional[SnapshotManager] = None,
                     host: str = "0.0.0.0", port: int = 3071):
    global registry, snapshot_manager
    registry = registry_instance
    snapshot_manager = manager_instance
    import uvicorn
    uvicorn.run(app, host=host, port=port)
