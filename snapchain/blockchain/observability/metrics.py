# MIT License
# Copyright (c) 2025 Hashborn

"""
Prometheus Metrics Exporter

Exports snapshot creator and registry metrics in Prometheus format.

Metrics:
- Chunk counts and progress of the running snapshot
- Chunk processing / whole snapshot generation durations
- Chunk write retries, created and failed snapshots
- Last snapshot L1 batch and generation timestamp
"""

from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry
import time

# Create registry for metrics
metrics_registry = CollectorRegistry()

# ═══════════════════════════════════════════════════════════════════
# SNAPSHOT CREATOR METRICS
# ═══════════════════════════════════════════════════════════════════

storage_logs_chunks_count = Gauge(
    'snapchain_snapshots_creator_storage_logs_chunks_count',
    'Number of storage log chunks in the snapshot being generated',
    registry=metrics_registry
)

storage_logs_chunks_left_to_process = Gauge(
    'snapchain_snapshots_creator_storage_logs_chunks_left_to_process',
    'Number of chunks not yet written for the snapshot being generated',
    registry=metrics_registry
)

storage_logs_processing_duration_seconds = Histogram(
    'snapchain_snapshots_creator_storage_logs_processing_duration_seconds',
    'Time to read, encode and write one storage log chunk',
    buckets=[0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30, 60, 300],
    registry=metrics_registry
)

snapshot_generation_duration_seconds = Gauge(
    'snapchain_snapshots_creator_snapshot_generation_duration_seconds',
    'Duration of the last successful snapshot generation',
    registry=metrics_registry
)

snapshot_l1_batch = Gauge(
    'snapchain_snapshots_creator_snapshot_l1_batch',
    'L1 batch number of the last committed snapshot',
    registry=metrics_registry
)

snapshot_generation_timestamp = Gauge(
    'snapchain_snapshots_creator_snapshot_generation_timestamp',
    'Unix time at which the last snapshot was committed',
    registry=metrics_registry
)

chunk_write_retries_total = Counter(
    'snapchain_snapshots_creator_chunk_write_retries_total',
    'Chunk writes retried after a transient object store failure',
    registry=metrics_registry
)

snapshots_created_total = Counter(
    'snapchain_snapshots_creator_snapshots_created_total',
    'Snapshots committed to the registry',
    registry=metrics_registry
)

snapshots_failed_total = Counter(
    'snapchain_snapshots_creator_snapshots_failed_total',
    'Snapshot runs aborted without commit',
    ['reason'],
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# REGISTRY METRICS
# ═══════════════════════════════════════════════════════════════════

snapshots_total = Gauge(
    'snapchain_snapshots_total',
    'Number of snapshots in the registry',
    registry=metrics_registry
)


# ═══════════════════════════════════════════════════════════════════
# HELPER FUNCTIONS
# ═══════════════════════════════════════════════════════════════════

def start_snapshot_metrics(chunks_count: int):
    """Reset progress gauges at the start of a snapshot run."""
    storage_logs_chunks_count.set(chunks_count)
    storage_logs_chunks_left_to_process.set(chunks_count)


def record_chunk_processed(duration_seconds: float):
    storage_logs_processing_duration_seconds.observe(duration_seconds)
    storage_logs_chunks_left_to_process.dec()


def record_snapshot_committed(l1_batch_number: int, duration_seconds: float):
    snapshots_created_total.inc()
    snapshot_l1_batch.set(l1_batch_number)
    snapshot_generation_duration_seconds.set(duration_seconds)
    snapshot_generation_timestamp.set(time.time())


def record_snapshot_failed(reason: str):
    snapshots_failed_total.labels(reason=reason).inc()


def update_metrics(registry):
    """
    Update gauges from registry state. Called when metrics are scraped.

    Args:
        registry: SnapshotRegistry instance (or None if not injected yet)
    """
    if registry is None:
        return
    snapshots = registry.list()
    snapshots_total.set(len(snapshots))
    if snapshots:
        snapshot_l1_batch.set(snapshots[0].l1_batch_number)
