"""
Prometheus metrics.

Purchasing counters are incremented by the purchase services after their
transaction commits; HTTP metrics are collected by request hooks. /metrics
is unauthenticated and must only be reachable from the monitoring network.
"""
import os
import time
from flask import Blueprint, Response, request, g
from prometheus_client import (
    Counter, Histogram, Gauge, CollectorRegistry, REGISTRY, CONTENT_TYPE_LATEST,
    generate_latest, multiprocess
)

metrics_bp = Blueprint('metrics', __name__)

# Gunicorn workers share metrics through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
    _metric_registry = None
else:
    registry = REGISTRY
    _metric_registry = REGISTRY


def _counter(name, documentation, labels=()):
    return Counter(name, documentation, list(labels), registry=_metric_registry)


# Purchasing
purchases_created_total = _counter(
    'purchases_created_total', 'Purchases created', ['type'])
purchases_completed_total = _counter(
    'purchases_completed_total', 'Purchases completed (stock intake and cost update applied)')
purchases_reversed_total = _counter(
    'purchases_reversed_total', 'Completed purchases deleted with stock reversal')
purchase_conflicts_total = _counter(
    'purchase_conflicts_total', 'Purchase transactions aborted by a timeout or lock conflict', ['operation'])

# HTTP
http_requests_total = _counter(
    'http_requests_total', 'Total HTTP requests', ['method', 'endpoint', 'http_status'])
http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=_metric_registry,
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)
)
http_requests_in_flight = Gauge(
    'http_requests_in_flight',
    'HTTP requests currently being processed',
    registry=_metric_registry,
    multiprocess_mode='livesum'
)


def setup_metrics_instrumentation(app):
    """Register request hooks that feed the HTTP metrics."""

    @app.before_request
    def start_request_timer():
        g._metrics_started = time.perf_counter()
        http_requests_in_flight.inc()

    @app.after_request
    def record_request(response):
        started = g.get('_metrics_started')
        if started is None:
            return response
        endpoint = request.endpoint or 'unknown'
        http_request_duration_seconds.labels(request.method, endpoint).observe(time.perf_counter() - started)
        http_requests_total.labels(request.method, endpoint, response.status_code).inc()
        return response

    @app.teardown_request
    def finish_request(exception=None):
        # Called on errors too
        if g.pop('_metrics_started', None) is not None:
            http_requests_in_flight.dec()


@metrics_bp.route('/metrics')
def metrics():
    """Prometheus exposition (text format)."""
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
