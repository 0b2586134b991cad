"""Observability: structured logging, Prometheus metrics and health checks."""

from .health import HealthChecker, HealthCheckResult
from .logging import OperatorLogger, setup_structured_logging
from .metrics import MetricsCollector, MetricsServer, metrics_collector

__all__ = [
    "HealthChecker",
    "HealthCheckResult",
    "MetricsCollector",
    "MetricsServer",
    "OperatorLogger",
    "metrics_collector",
    "setup_structured_logging",
]
