"""
Monitoring and Observability
Prometheus metrics and monitoring setup
"""

from prometheus_client import Counter, Gauge, generate_latest, CONTENT_TYPE_LATEST
import logging

logger = logging.getLogger(__name__)

sheets_processed = Counter(
    'roster_sheets_processed_total',
    'Roster sheets processed, by outcome',
    ['outcome']
)

pending_resolutions = Counter(
    'roster_pending_resolutions_total',
    'Pending duplicate entries finished, by outcome',
    ['outcome']
)

active_sessions = Gauge(
    'roster_active_sessions',
    'Number of live reconciliation sessions'
)

sessions_swept = Counter(
    'roster_sessions_swept_total',
    'Sessions removed by the retention sweep'
)


def register_monitoring_routes(app):
    """Register monitoring routes with Flask app"""

    @app.route('/metrics', methods=['GET'])
    def metrics():
        """Prometheus metrics endpoint"""
        return generate_latest(), 200, {'Content-Type': CONTENT_TYPE_LATEST}

    logger.info("Monitoring routes registered at /metrics")


def track_sheet(outcome: str):
    """Count one sheet as finalized, pending or rejected"""
    sheets_processed.labels(outcome=outcome).inc()


def track_resolution(outcome: str):
    """Count one pending entry as resolved or abandoned"""
    pending_resolutions.labels(outcome=outcome).inc()
