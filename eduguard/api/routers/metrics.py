"""
Prometheus scrape endpoint (GET /metrics)

Collectors live in eduguard.core.metrics:
- eduguard_detection_runs_total{trigger,status}
- eduguard_risk_flags_created_total / _updated_total / _auto_resolved_total
- eduguard_notifications_total{channel,status}
- eduguard_settings_cache_events_total{result}
- eduguard_batch_students_failed{school_id}
"""
import logging

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from ...core import metrics  # noqa: F401  registers the collectors

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Monitoring"])


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="EduGuard detection, flag and notification counters in the Prometheus text format",
    response_class=Response,
)
def get_metrics() -> Response:
    payload = generate_latest(REGISTRY)
    logger.debug("Exported Prometheus metrics", extra={"size_bytes": len(payload)})
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
