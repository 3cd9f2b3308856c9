"""
Prometheus metrics for stability and bin lifecycle operations.

- FastAPI: request count, latency (Instrumentator)
- Node/instance: app_info
- Stability: exceptions_total, db_errors_total
- HA: ready gauge (1=up, 0=shutting down)
- Business: bin operations, trash purge, import/export, photo upload
"""
import logging
import socket

from prometheus_client import REGISTRY, Counter, Gauge
from prometheus_fastapi_instrumentator import Instrumentator

from qrbin.config import get_settings

logger = logging.getLogger(__name__)

# --- Stability ---
exceptions_total = Counter(
    "qrbin_exceptions_total",
    "Total unhandled exceptions",
    registry=REGISTRY,
)
db_errors_total = Counter(
    "qrbin_db_errors_total",
    "Total database session/transaction errors",
    registry=REGISTRY,
)

# --- HA ---
ready = Gauge(
    "qrbin_ready",
    "1 if the instance accepts traffic, 0 while shutting down",
    registry=REGISTRY,
)
in_flight_requests = Gauge(
    "qrbin_in_flight_requests",
    "Requests currently being processed",
    registry=REGISTRY,
)

# --- Bin lifecycle ---
bin_operations_total = Counter(
    "qrbin_bin_operations_total",
    "Bin operations by type and outcome",
    ["operation", "result"],  # operation: create | update | delete | restore | purge | add_tags
    registry=REGISTRY,
)
short_code_collisions_total = Counter(
    "qrbin_short_code_collisions_total",
    "Short code unique-constraint collisions that triggered a retry",
    registry=REGISTRY,
)
trash_purged_bins_total = Counter(
    "qrbin_trash_purged_bins_total",
    "Bins permanently removed by the retention sweep",
    registry=REGISTRY,
)
trash_sweep_failures_total = Counter(
    "qrbin_trash_sweep_failures_total",
    "Retention sweeps that failed (errors are logged, never raised)",
    registry=REGISTRY,
)

# --- Portability ---
import_bins_total = Counter(
    "qrbin_import_bins_total",
    "Bins processed by import",
    ["outcome"],  # imported | skipped
    registry=REGISTRY,
)
import_requests_total = Counter(
    "qrbin_import_requests_total",
    "Import calls by mode and outcome",
    ["mode", "result"],
    registry=REGISTRY,
)
export_requests_total = Counter(
    "qrbin_export_requests_total",
    "Export calls by outcome",
    ["result"],
    registry=REGISTRY,
)

# --- Photos ---
photo_upload_total = Counter(
    "qrbin_photo_upload_total",
    "Photo uploads by outcome",
    ["result"],
    registry=REGISTRY,
)
storage_missing_files_total = Counter(
    "qrbin_storage_missing_files_total",
    "Photo rows whose backing file was missing when read",
    registry=REGISTRY,
)


def _node_identity() -> str:
    """Hostname used as node label."""
    try:
        return socket.gethostname()
    except OSError:
        return "unknown"


def setup_prometheus(app) -> None:
    """
    Register Prometheus instrumentation and expose /metrics.

    1. app_info (labels only).
    2. Instrumentator (FastAPI request metrics).
    """
    settings = get_settings()

    app_info = Gauge(
        "qrbin_app_info",
        "Application and node identity (labels only, value is 1)",
        ["node", "app", "version", "environment"],
        registry=REGISTRY,
    )
    app_info.labels(
        node=_node_identity(),
        app=settings.app_name,
        version=settings.app_version,
        environment=settings.environment.value,
    ).set(1)

    # status 라벨을 2xx/3xx 대신 구체 코드(200, 201, 404, 500 등)로 노출
    Instrumentator(should_group_status_codes=False).instrument(app).expose(
        app, endpoint="/metrics"
    )
