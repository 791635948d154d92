"""
Prometheus metrics for the risk engine

Exposed through GET /metrics (eduguard.api.routers.metrics).
"""
from prometheus_client import Counter, Gauge

detection_runs_total = Counter(
    "eduguard_detection_runs_total",
    "Risk detection runs by trigger and outcome",
    ["trigger", "status"],
)

risk_flags_created_total = Counter(
    "eduguard_risk_flags_created_total",
    "Risk flags created",
    ["risk_type", "severity"],
)

risk_flags_updated_total = Counter(
    "eduguard_risk_flags_updated_total",
    "Active risk flags updated in place by re-detection",
    ["risk_type", "severity"],
)

risk_flags_auto_resolved_total = Counter(
    "eduguard_risk_flags_auto_resolved_total",
    "Duplicate active flags force-resolved by the reconciler",
    ["risk_type"],
)

notifications_total = Counter(
    "eduguard_notifications_total",
    "Notifications by channel (admin, guardian) and outcome",
    ["channel", "status"],
)

settings_cache_events_total = Counter(
    "eduguard_settings_cache_events_total",
    "Risk rule settings cache lookups",
    ["result"],
)

batch_students_failed = Gauge(
    "eduguard_batch_students_failed",
    "Students that failed in the latest school-wide run",
    ["school_id"],
)
