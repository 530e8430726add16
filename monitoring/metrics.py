"""
Proxy Announcer Metrics Collection
Prometheus counters and histograms for registry dispatches
"""

from typing import Dict, Optional
import logging

from prometheus_client import (
    Counter, Gauge, Histogram,
    CollectorRegistry, generate_latest, start_http_server
)

logger = logging.getLogger(__name__)


# Gauge values for announcer_lifecycle_state
LIFECYCLE_STATE_VALUES = {
    'idle': 0,
    'disabled': 1,
    'started': 2,
    'stopped': 3,
}


class MetricsCollector:
    """
    Metrics collector for registry dispatches
    Owns a private CollectorRegistry so several announcers can coexist
    """

    def __init__(self, namespace: str = 'announcer',
                 registry: Optional[CollectorRegistry] = None):
        self.namespace = namespace
        self.registry = registry or CollectorRegistry()
        self._metrics = {}
        self._init_metrics()

    def _init_metrics(self):
        """Initialize Prometheus metrics"""
        ns = self.namespace

        self._metrics['attempts_total'] = Counter(
            f'{ns}_dispatch_attempts_total',
            'HTTP attempts sent to the registry',
            ['intent', 'result'],
            registry=self.registry
        )

        self._metrics['dispatches_total'] = Counter(
            f'{ns}_dispatches_total',
            'Completed dispatch cycles',
            ['intent', 'outcome'],
            registry=self.registry
        )

        self._metrics['dispatch_duration_seconds'] = Histogram(
            f'{ns}_dispatch_duration_seconds',
            'Wall time of a dispatch cycle including retries',
            ['intent'],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
            registry=self.registry
        )

        self._metrics['lifecycle_state'] = Gauge(
            f'{ns}_lifecycle_state',
            'Lifecycle state (0=idle, 1=disabled, 2=started, 3=stopped)',
            [],
            registry=self.registry
        )

    def increment(self, name: str, labels: Dict = None, value: int = 1):
        """Increment a counter metric"""
        metric = self._metrics.get(name)
        if metric and isinstance(metric, Counter):
            if labels:
                metric.labels(**labels).inc(value)
            else:
                metric.inc(value)

    def gauge(self, name: str, value: float, labels: Dict = None):
        """Set a gauge metric"""
        metric = self._metrics.get(name)
        if metric and isinstance(metric, Gauge):
            if labels:
                metric.labels(**labels).set(value)
            else:
                metric.set(value)

    def timing(self, name: str, duration: float, labels: Dict = None):
        """Record a timing/histogram metric"""
        metric = self._metrics.get(name)
        if metric and isinstance(metric, Histogram):
            if labels:
                metric.labels(**labels).observe(duration)
            else:
                metric.observe(duration)

    def record_attempt(self, intent: str, result: str):
        """Record one HTTP attempt"""
        self.increment('attempts_total', {'intent': intent, 'result': result})

    def record_dispatch(self, intent: str, outcome: str, duration: float):
        """Record a finished dispatch cycle"""
        self.increment('dispatches_total', {'intent': intent, 'outcome': outcome})
        self.timing('dispatch_duration_seconds', duration, {'intent': intent})

    def set_lifecycle_state(self, state: str):
        self.gauge('lifecycle_state', LIFECYCLE_STATE_VALUES.get(state, 0))

    def generate_latest(self) -> bytes:
        """Generate Prometheus metrics output"""
        return generate_latest(self.registry)

    def start_http_server(self, port: int, addr: str = '0.0.0.0'):
        """Expose this collector's registry over HTTP"""
        start_http_server(port, addr=addr, registry=self.registry)
        logger.info(f"Metrics exposed on {addr}:{port}")
