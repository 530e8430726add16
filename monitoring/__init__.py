"""
Proxy Announcer Monitoring Module
Prometheus metrics and structured logging
"""

from .metrics import MetricsCollector
from .logger import (
    setup_logging, build_logging_config, LifecycleContext, LifecycleFilter, JSONFormatter
)

__all__ = [
    'MetricsCollector',
    'setup_logging',
    'build_logging_config',
    'LifecycleContext',
    'LifecycleFilter',
    'JSONFormatter',
]
