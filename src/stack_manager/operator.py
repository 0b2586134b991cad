#!/usr/bin/env python3
"""
Stack Manager - Main entry point for the Kopf-based Stack operator.

The operator installs and uninstalls Stacks: packaged control plane
extensions consisting of CRDs, permissions and a controller workload.

Usage:
    python -m stack_manager.operator
    # Or with kopf directly:
    kopf run -m stack_manager.operator --all-namespaces

Environment Variables:
    STACK_MANAGER_NAMESPACES: Comma-separated list of namespaces to watch
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
    HOST_CONTROLLER_NAMESPACE: Enables host-aware mode when set
"""

import logging
import random
import sys

import kopf
from kubernetes.client import ApiClient

# Import all handler modules to register them with kopf
from stack_manager.handlers import stack  # noqa: F401
from stack_manager.observability.health import HealthChecker
from stack_manager.observability.logging import setup_structured_logging
from stack_manager.observability.metrics import MetricsServer
from stack_manager.services.stack_handler import StackHandlerFactory, StackServices
from stack_manager.services.stack_reconciler import StackReconciler
from stack_manager.settings import settings as operator_settings
from stack_manager.utils.hosted import HostAwareConfig
from stack_manager.utils.kubernetes import (
    KubeApis,
    api_server_url,
    ensure_distinct_clusters,
    get_host_kubernetes_client,
    get_kubernetes_client,
)

# Global reference to metrics server for cleanup
_global_metrics_server: MetricsServer | None = None


def configure_logging() -> None:
    """Configure structured logging for the operator based on operator_settings."""
    setup_structured_logging(
        log_level=operator_settings.log_level.upper(),
        enable_json_formatting=operator_settings.json_logs,
        correlation_id_enabled=operator_settings.correlation_ids,
        log_health_probes=operator_settings.log_health_probes,
    )


def get_watched_namespaces() -> list[str] | None:
    return operator_settings.watched_namespaces


def build_reconciler(
    kube: KubeApis,
    host_kube: KubeApis | None,
    host_aware: HostAwareConfig | None,
) -> StackReconciler:
    """Wire the StackReconciler from operator settings."""
    services = StackServices.build(
        kube,
        host_kube=host_kube,
        host_aware=host_aware,
        requeue_after_success=operator_settings.requeue_after_success_seconds,
        crd_label_conflict_retries=operator_settings.crd_label_conflict_retries,
    )
    return StackReconciler(
        store=services.store,
        handler_factory=StackHandlerFactory(services),
        reconcile_timeout=operator_settings.reconcile_timeout_seconds,
        retry_delay=operator_settings.retry_delay_seconds,
    )


def load_cluster_clients() -> tuple[ApiClient, ApiClient | None]:
    """
    Load the tenant client and, in host-aware mode, the host client.

    Without HOST_KUBECONFIG the host client uses the pod's in-cluster
    credentials, so the tenant client must come from KUBECONFIG instead.
    """
    if not operator_settings.host_aware:
        return get_kubernetes_client(), None

    host_in_cluster = not operator_settings.host_kubeconfig
    tenant_client = get_kubernetes_client(prefer_kubeconfig=host_in_cluster)
    host_client = get_host_kubernetes_client(operator_settings.host_kubeconfig)
    ensure_distinct_clusters(tenant_client, host_client)
    return tenant_client, host_client


@kopf.on.startup()
async def startup_handler(
    settings: kopf.OperatorSettings, memo: kopf.Memo, **_
) -> None:
    """
    Operator startup configuration.

    Loads the tenant and host cluster clients, builds the host-aware
    configuration and the StackReconciler, and starts the metrics server.
    """
    global _global_metrics_server

    logging.info("Starting Stack Manager...")
    settings.watching.reconnect_backoff = 1.0

    settings.peering.name = "stack-manager"
    settings.peering.priority = random.randint(0, 32767)
    logging.info(
        f"Peering priority set to {settings.peering.priority} for leader election"
    )
    settings.execution.max_workers = 20

    watched_namespaces = get_watched_namespaces()
    if watched_namespaces:
        logging.info(f"Watching namespaces: {', '.join(watched_namespaces)}")
    else:
        logging.info("Watching all namespaces (cluster-wide mode)")

    tenant_client, host_client = load_cluster_clients()
    kube = KubeApis.from_client(tenant_client)

    host_aware = HostAwareConfig.for_host(
        operator_settings.host_controller_namespace,
        operator_settings.tenant_api_url or api_server_url(tenant_client),
    )
    host_kube = None
    if host_aware is not None and host_client is not None:
        host_kube = KubeApis.from_client(host_client)
        logging.info(
            f"Host-aware mode: controllers run in host namespace "
            f"{host_aware.host_controller_namespace}, tenant API at "
            f"{host_aware.tenant_api_service_host}:{host_aware.tenant_api_service_port}"
        )

    memo.stack_reconciler = build_reconciler(kube, host_kube, host_aware)
    memo.health_checker = HealthChecker(kube, host_kube)

    try:
        metrics_server = MetricsServer(
            port=operator_settings.metrics_port,
            host=operator_settings.metrics_host,
            health_checker=memo.health_checker,
        )
        await metrics_server.start()
        _global_metrics_server = metrics_server
    except OSError as e:
        logging.error(f"Failed to start metrics server: {e}")
        # Don't fail operator startup if metrics server fails
        logging.warning("Continuing without metrics server")


@kopf.on.cleanup()
async def cleanup_handler(**_) -> None:
    """Stop the metrics server on shutdown."""
    global _global_metrics_server

    logging.info("Shutting down Stack Manager...")
    if _global_metrics_server:
        await _global_metrics_server.stop()
        _global_metrics_server = None


@kopf.on.probe(id="healthz")
async def health_check(memo: kopf.Memo, **_) -> dict[str, str]:
    """Health check probe for Kubernetes liveness checks."""
    health_checker: HealthChecker = memo.health_checker
    results = await health_checker.check_all()
    return {
        "status": health_checker.get_overall_health(results),
        "operator": "stack-manager",
    }


@kopf.on.probe(id="ready")
async def readiness_check(memo: kopf.Memo, **_) -> dict[str, str]:
    """Readiness check probe - Kubernetes API reachable and Stack CRD installed."""
    health_checker: HealthChecker = memo.health_checker
    results = await health_checker.check_readiness()
    ready = all(result.status == "healthy" for result in results.values())
    return {"status": "ready" if ready else "not_ready", "operator": "stack-manager"}


def main() -> None:
    """
    Main entry point for the operator.

    Configures logging, determines the namespace scope and runs kopf.
    """
    configure_logging()
    watched_namespaces = get_watched_namespaces()

    try:
        if watched_namespaces:
            kopf.run(
                namespaces=watched_namespaces,
                liveness_endpoint="http://0.0.0.0:8080/healthz",
            )
        else:
            kopf.run(
                clusterwide=True,
                liveness_endpoint="http://0.0.0.0:8080/healthz",
            )
    except KeyboardInterrupt:
        logging.info("Received shutdown signal")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Operator failed with error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
