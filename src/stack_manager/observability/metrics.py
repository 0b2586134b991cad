"""
Prometheus metrics for the Stack manager.

This module provides metrics collection for monitoring Stack installs and
teardowns, shared CRD label churn, and the HTTP server exposing them.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
    json_response,
)
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

if TYPE_CHECKING:
    from .health import HealthChecker

logger = logging.getLogger(__name__)

# Global metrics registry
_metrics_registry: CollectorRegistry | None = None

RECONCILIATION_TOTAL = Counter(
    "stack_manager_reconciliation_total",
    "Total number of reconciliation attempts",
    ["resource_type", "namespace", "name", "result"],
    registry=None,  # Registered in get_metrics_registry
)

RECONCILIATION_DURATION = Histogram(
    "stack_manager_reconciliation_duration_seconds",
    "Time spent on reconciliation operations",
    ["resource_type", "namespace", "operation"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=None,
)

RECONCILIATION_ERRORS = Counter(
    "stack_manager_reconciliation_errors_total",
    "Total number of reconciliation errors",
    ["resource_type", "namespace", "error_type", "retryable"],
    registry=None,
)

STACK_PHASE = Gauge(
    "stack_manager_stack_phase",
    "Current lifecycle phase of a Stack (1 for the active phase)",
    ["namespace", "name", "phase"],
    registry=None,
)

CRD_LABEL_PATCHES = Counter(
    "stack_manager_crd_label_patches_total",
    "Total number of label patches applied to shared CRDs",
    ["operation"],
    registry=None,
)

CRD_LABEL_CONFLICTS = Counter(
    "stack_manager_crd_label_conflicts_total",
    "Total number of CRD label patches rejected with a conflict",
    [],
    registry=None,
)

SECRET_SYNC_TOTAL = Counter(
    "stack_manager_token_secret_sync_total",
    "Total number of service account token secret syncs to the host cluster",
    ["result"],
    registry=None,
)

_ALL_METRICS = [
    RECONCILIATION_TOTAL,
    RECONCILIATION_DURATION,
    RECONCILIATION_ERRORS,
    STACK_PHASE,
    CRD_LABEL_PATCHES,
    CRD_LABEL_CONFLICTS,
    SECRET_SYNC_TOTAL,
]

_PHASES = ("Creating", "Available", "Deleting", "Failed")


def get_metrics_registry() -> CollectorRegistry:
    """Get or create the global metrics registry."""
    global _metrics_registry

    if _metrics_registry is None:
        _metrics_registry = CollectorRegistry()
        for metric in _ALL_METRICS:
            _metrics_registry.register(metric)

    return _metrics_registry


class MetricsCollector:
    """Collects and manages metrics for the Stack manager."""

    def __init__(self):
        self.registry = get_metrics_registry()

    @asynccontextmanager
    async def track_reconciliation(
        self,
        resource_type: str,
        namespace: str,
        name: str,
        operation: str = "reconcile",
    ):
        """
        Context manager to track reconciliation operations.

        Args:
            resource_type: Type of resource being reconciled
            namespace: Namespace of the resource
            name: Name of the resource
            operation: Type of operation being performed
        """
        start_time = time.time()
        result = "unknown"

        try:
            yield
            result = "success"
        except Exception as e:
            result = "error"
            self.record_error(resource_type, namespace, e)
            raise
        finally:
            duration = time.time() - start_time

            RECONCILIATION_TOTAL.labels(
                resource_type=resource_type,
                namespace=namespace,
                name=name,
                result=result,
            ).inc()

            RECONCILIATION_DURATION.labels(
                resource_type=resource_type, namespace=namespace, operation=operation
            ).observe(duration)

    def record_error(self, resource_type: str, namespace: str, error: Exception):
        retryable = "true" if getattr(error, "retryable", True) else "false"
        RECONCILIATION_ERRORS.labels(
            resource_type=resource_type,
            namespace=namespace,
            error_type=type(error).__name__,
            retryable=retryable,
        ).inc()

    def update_stack_phase(self, namespace: str, name: str, phase: str):
        """Mark ``phase`` as the active phase of a Stack."""
        for candidate in _PHASES:
            STACK_PHASE.labels(namespace=namespace, name=name, phase=candidate).set(
                1 if candidate == phase else 0
            )

    def forget_stack(self, namespace: str, name: str):
        for candidate in _PHASES:
            try:
                STACK_PHASE.remove(namespace, name, candidate)
            except KeyError:
                continue

    def record_crd_label_patch(self, operation: str):
        CRD_LABEL_PATCHES.labels(operation=operation).inc()

    def record_crd_label_conflict(self):
        CRD_LABEL_CONFLICTS.inc()

    def record_secret_sync(self, result: str):
        SECRET_SYNC_TOTAL.labels(result=result).inc()


class MetricsServer:
    """HTTP server for exposing Prometheus metrics and health endpoints."""

    def __init__(
        self,
        port: int = 8081,
        host: str = "0.0.0.0",
        health_checker: "HealthChecker | None" = None,
    ):
        """
        Initialize metrics server.

        Args:
            port: Port to serve metrics on
            host: Host interface to bind to
            health_checker: Checker backing /health and /ready
        """
        self.port = port
        self.host = host
        self.health_checker = health_checker
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.app.router.add_get("/metrics", self._metrics_handler)
        self.app.router.add_get("/health", self._health_handler)
        self.app.router.add_get("/ready", self._ready_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)  # K8s compatibility

    async def _metrics_handler(self, request: Request) -> Response:
        """Handle /metrics endpoint for Prometheus scraping."""
        metrics_data = generate_latest(get_metrics_registry())
        return Response(body=metrics_data, content_type=CONTENT_TYPE_LATEST)

    async def _health_handler(self, request: Request) -> Response:
        """Handle /health endpoint for operator health checks."""
        if self.health_checker is None:
            return json_response({"status": "unknown", "timestamp": time.time()})

        health_results = await self.health_checker.check_all()
        health_dict = self.health_checker.to_dict(health_results)
        status_code = 200 if health_dict["status"] in ["healthy", "degraded"] else 503
        return json_response(health_dict, status=status_code)

    async def _ready_handler(self, request: Request) -> Response:
        """Handle /ready endpoint for readiness probes."""
        if self.health_checker is None:
            return json_response({"status": "not_ready", "timestamp": time.time()}, status=503)

        results = await self.health_checker.check_readiness()
        ready = all(result.status == "healthy" for result in results.values())
        return json_response(
            {
                "status": "ready" if ready else "not_ready",
                "timestamp": time.time(),
                "checks": {name: result.status for name, result in results.items()},
            },
            status=200 if ready else 503,
        )

    async def _healthz_handler(self, request: Request) -> Response:
        """Handle /healthz endpoint for Kubernetes compatibility."""
        return Response(text="ok")

    async def start(self) -> None:
        """Start the metrics server."""
        self.runner = AppRunner(self.app)
        await self.runner.setup()

        self.site = TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        logger.info(f"Metrics server started on {self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the metrics server."""
        if self.site:
            await self.site.stop()
            self.site = None

        if self.runner:
            await self.runner.cleanup()
            self.runner = None

        logger.info("Metrics server stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()


# Global metrics collector instance
metrics_collector = MetricsCollector()
