"""Prometheus metric definitions for knowledge store self-instrumentation.

All metrics are module-level singletons registered with the default
prometheus_client registry.  Import them wherever instrumentation is needed.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# ---------------------------------------------------------------------------
# Histogram bucket definitions
# ---------------------------------------------------------------------------

STORE_DURATION_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0)
MAINTENANCE_DURATION_BUCKETS = (0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0)

# ---------------------------------------------------------------------------
# Store operation metrics
# ---------------------------------------------------------------------------

STORE_OPERATIONS_TOTAL = Counter(
    "ar_wizard_store_operations_total",
    "Total number of knowledge store primitive operations",
    labelnames=["namespace", "operation", "status"],
)

STORE_OPERATION_DURATION = Histogram(
    "ar_wizard_store_operation_duration_seconds",
    "Duration of knowledge store primitive operations in seconds",
    labelnames=["operation"],
    buckets=STORE_DURATION_BUCKETS,
)

NAMESPACE_RECORDS = Gauge(
    "ar_wizard_namespace_records",
    "Number of records per namespace at the last stats collection",
    labelnames=["namespace"],
)

# ---------------------------------------------------------------------------
# Expiry metrics
# ---------------------------------------------------------------------------

ANALYSES_SWEPT_TOTAL = Counter(
    "ar_wizard_analyses_swept_total",
    "Total number of expired database analyses physically deleted",
)

CONTEXT_EXPIRED_TOTAL = Counter(
    "ar_wizard_context_expired_total",
    "Total number of shared context entries deleted on read after TTL expiry",
)

# ---------------------------------------------------------------------------
# Maintenance metrics
# ---------------------------------------------------------------------------

MAINTENANCE_RUNS_TOTAL = Counter(
    "ar_wizard_maintenance_runs_total",
    "Total number of maintenance runs",
    labelnames=["trigger", "status"],
)

MAINTENANCE_DURATION = Histogram(
    "ar_wizard_maintenance_duration_seconds",
    "Time taken by a maintenance run in seconds",
    buckets=MAINTENANCE_DURATION_BUCKETS,
)

APP_INFO = Info(
    "ar_wizard",
    "AR Wizard knowledge store build information",
)
