"""
Prometheus metrics for the Runner Webhook Operator.

Collectors are registered on the default registry at import time and served
by ``prometheus_client``'s HTTP server on the metrics address.
"""

import logging

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

RECONCILE_TOTAL = Counter(
    "runner_webhook_reconcile_total",
    "Total number of autoscaler reconciliations",
    ["result"],
)

RECONCILE_DURATION = Histogram(
    "runner_webhook_reconcile_duration_seconds",
    "Time spent reconciling one autoscaler",
)

RECONCILE_IN_PROGRESS = Gauge(
    "runner_webhook_reconcile_in_progress",
    "Number of reconciliations currently running",
)

WORKQUEUE_DEPTH = Gauge(
    "runner_webhook_workqueue_depth",
    "Number of autoscaler keys waiting to be reconciled",
)

WEBHOOKS_CREATED = Counter(
    "runner_webhook_webhooks_created_total",
    "Total number of repository webhooks created",
)

LEADER = Gauge(
    "runner_webhook_leader",
    "1 while this replica holds the leader election lease",
)


def start_metrics_server(host: str, port: int) -> bool:
    """
    Serve metrics in a background thread.

    Returns:
        True if the server started, False if the address could not be bound
    """
    try:
        start_http_server(port, addr=host)
    except OSError as e:
        logger.warning(f"Failed to start metrics server on {host}:{port}: {e}")
        return False

    logger.info(f"Prometheus metrics server started on {host}:{port}")
    return True
