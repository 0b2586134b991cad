"""
Health check utilities for the Stack manager.

Checks cover connectivity to the tenant API, presence of the Stack CRD and,
in host-aware mode, connectivity to the host cluster API.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any

from kubernetes.client.rest import ApiException

from stack_manager.constants import STACK_CRD_NAME
from stack_manager.utils.kubernetes import KubeApis, call_api

logger = logging.getLogger(__name__)


@dataclass
class HealthCheckResult:
    """Result of a health check operation."""

    name: str
    status: str  # "healthy", "unhealthy", "degraded", "unknown"
    message: str
    details: dict[str, Any] | None = None
    duration: float = 0.0
    timestamp: float = 0.0


class HealthChecker:
    """Performs health checks for the operator."""

    def __init__(self, kube: KubeApis, host_kube: KubeApis | None = None):
        """
        Initialize health checker.

        Args:
            kube: API groups of the tenant cluster
            host_kube: API groups of the host cluster, only in host-aware mode
        """
        self.kube = kube
        self.host_kube = host_kube

    async def check_all(self) -> dict[str, HealthCheckResult]:
        results = await self.check_readiness()
        if self.host_kube is not None:
            results["host_api"] = await self._check_api("host_api", self.host_kube)
        return results

    async def check_readiness(self) -> dict[str, HealthCheckResult]:
        """Checks that must pass before Stacks can be reconciled."""
        return {
            "kubernetes_api": await self._check_api("kubernetes_api", self.kube),
            "crds_installed": await self._check_stack_crd(),
        }

    async def _check_api(self, name: str, kube: KubeApis) -> HealthCheckResult:
        start_time = time.time()
        try:
            await call_api(kube.core.list_namespace, limit=1, timeout_seconds=5)
        except ApiException as e:
            duration = time.time() - start_time
            return HealthCheckResult(
                name=name,
                status="unhealthy",
                message=f"Kubernetes API error: {e.reason}",
                details={"status_code": e.status},
                duration=duration,
                timestamp=time.time(),
            )
        except Exception as e:
            duration = time.time() - start_time
            return HealthCheckResult(
                name=name,
                status="unhealthy",
                message=f"Failed to connect to Kubernetes API: {e}",
                duration=duration,
                timestamp=time.time(),
            )

        duration = time.time() - start_time
        return HealthCheckResult(
            name=name,
            status="healthy",
            message="Kubernetes API is accessible",
            details={"response_time_ms": round(duration * 1000, 2)},
            duration=duration,
            timestamp=time.time(),
        )

    async def _check_stack_crd(self) -> HealthCheckResult:
        start_time = time.time()
        try:
            await call_api(
                self.kube.apiextensions.read_custom_resource_definition,
                name=STACK_CRD_NAME,
            )
        except ApiException as e:
            duration = time.time() - start_time
            message = (
                f"Missing required CRD: {STACK_CRD_NAME}"
                if e.status == 404
                else f"Failed to check CRDs: {e.reason}"
            )
            return HealthCheckResult(
                name="crds_installed",
                status="unhealthy",
                message=message,
                duration=duration,
                timestamp=time.time(),
            )

        duration = time.time() - start_time
        return HealthCheckResult(
            name="crds_installed",
            status="healthy",
            message="All required CRDs are installed",
            details={"installed": [STACK_CRD_NAME]},
            duration=duration,
            timestamp=time.time(),
        )

    def get_overall_health(self, results: dict[str, HealthCheckResult]) -> str:
        if not results:
            return "unknown"

        statuses = [result.status for result in results.values()]

        if "unhealthy" in statuses:
            return "unhealthy"
        elif "degraded" in statuses or "unknown" in statuses:
            return "degraded"
        else:
            return "healthy"

    def to_dict(self, results: dict[str, HealthCheckResult]) -> dict[str, Any]:
        """
        Convert health check results to dictionary format.

        Args:
            results: Health check results

        Returns:
            Dictionary representation
        """
        return {
            "status": self.get_overall_health(results),
            "timestamp": time.time(),
            "checks": {
                name: {
                    "status": result.status,
                    "message": result.message,
                    "details": result.details,
                    "duration": result.duration,
                    "timestamp": result.timestamp,
                }
                for name, result in results.items()
            },
        }
