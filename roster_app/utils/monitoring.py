# roster_app/utils/monitoring.py

from flask import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest


def init_monitoring(app):
    """Expose Prometheus metrics when MONITORING_ENABLED is set."""
    if not app.config.get("MONITORING_ENABLED", False):
        return

    endpoint = app.config.get("METRICS_ENDPOINT", "/metrics")
    if "metrics" in app.view_functions:
        return

    @app.route(endpoint, endpoint="metrics")
    def metrics():
        return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)

    app.logger.info("Prometheus metrics exposed at %s", endpoint)
