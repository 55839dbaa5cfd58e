# Prometheus metrics for the ingestion pipeline

from typing import Optional

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from .logging import get_logger

logger = get_logger(__name__)

# ===== Decode metrics =====
ingest_records_total = Counter(
    "ingest_records_total",
    "Input lines seen by the decoder, by classification",
    ["kind"],
)

ingest_files_total = Counter(
    "ingest_files_total",
    "Input files handled by the dispatcher",
    ["status"],
)

# ===== Write metrics =====
ingest_batches_total = Counter(
    "ingest_batches_total",
    "Batches that reached a terminal state",
    ["status"],
)

ingest_batch_attempts_total = Counter(
    "ingest_batch_attempts_total",
    "Transaction attempts made for batches",
    ["result"],
)

ingest_batch_duration_seconds = Histogram(
    "ingest_batch_duration_seconds",
    "Wall time from first attempt to terminal state for a batch",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

ingest_batches_in_flight = Gauge(
    "ingest_batches_in_flight",
    "Batches currently holding a write slot",
)


def record_decode_counts(
    total: int, deleted: int, malformed: int, decoded: int, reshares: int
) -> None:
    ingest_records_total.labels(kind="total").inc(total)
    ingest_records_total.labels(kind="deleted").inc(deleted)
    ingest_records_total.labels(kind="malformed").inc(malformed)
    ingest_records_total.labels(kind="decoded").inc(decoded)
    ingest_records_total.labels(kind="reshare").inc(reshares)


def setup_metrics(port: Optional[int]) -> None:
    """
    Expose metrics over HTTP when a port is given.

    Args:
        port: TCP port for the exposition endpoint, or None to keep them in-process
    """
    if port is None:
        return
    start_http_server(port)
    logger.info("metrics_server_started", port=port)
