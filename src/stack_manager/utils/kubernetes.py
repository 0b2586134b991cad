"""
Kubernetes utilities for the Stack manager.

This module provides helper functions for interacting with the Kubernetes API:
- Tenant and host API client configuration
- A bundle of the typed API groups used by the Stack services
- Classification of API errors
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from stack_manager.errors import ConfigurationError, KubernetesAPIError
from stack_manager.utils.naming import label_selector

logger = logging.getLogger(__name__)

T = TypeVar("T")

MERGE_PATCH = "application/merge-patch+json"


def get_kubernetes_client(prefer_kubeconfig: bool = False) -> client.ApiClient:
    """
    Get configured Kubernetes API client for the tenant cluster.

    This function handles both in-cluster and local development configurations.

    Args:
        prefer_kubeconfig: Load only the kubeconfig (``KUBECONFIG``). Used in
            host-aware mode when the in-cluster credentials belong to the host.

    Returns:
        Configured Kubernetes API client
    """
    if prefer_kubeconfig:
        config.load_kube_config()
        logger.debug("Loaded tenant kubeconfig for host-aware mode")
        return client.ApiClient()

    try:
        # Try in-cluster config first (when running in a pod)
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            # Fall back to local kubeconfig (for development)
            config.load_kube_config()
            logger.debug("Loaded kubeconfig from local environment")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    return client.ApiClient()


def get_host_kubernetes_client(kubeconfig: str = "") -> client.ApiClient:
    """
    Get an API client for the host cluster where Stack controllers run.

    Args:
        kubeconfig: Path to a kubeconfig for the host cluster. When empty the
            in-cluster service account of the operator pod is used.

    Returns:
        API client with its own configuration, independent of the default one
    """
    if kubeconfig:
        logger.debug(f"Loading host cluster configuration from {kubeconfig}")
        return config.new_client_from_config(config_file=kubeconfig)

    configuration = client.Configuration()
    config.load_incluster_config(client_configuration=configuration)
    logger.debug("Loaded in-cluster configuration for host cluster")
    return client.ApiClient(configuration)


def api_server_url(api_client: client.ApiClient) -> str:
    return api_client.configuration.host


def ensure_distinct_clusters(
    tenant_client: client.ApiClient, host_client: client.ApiClient
) -> None:
    """
    Reject a host-aware setup whose tenant and host clients share an API server.

    Raises:
        ConfigurationError: If both clients talk to the same API server
    """
    tenant_url = api_server_url(tenant_client)
    if tenant_url == api_server_url(host_client):
        raise ConfigurationError(
            f"tenant and host clients both use the API server at {tenant_url}",
            user_action="Point KUBECONFIG at the tenant cluster or set HOST_KUBECONFIG",
        )


@dataclass(frozen=True)
class KubeApis:
    """Typed API groups bound to one cluster."""

    core: Any
    rbac: Any
    apps: Any
    batch: Any
    apiextensions: Any
    custom_objects: Any

    @classmethod
    def from_client(cls, api_client: client.ApiClient) -> "KubeApis":
        return cls(
            core=client.CoreV1Api(api_client),
            rbac=client.RbacAuthorizationV1Api(api_client),
            apps=client.AppsV1Api(api_client),
            batch=client.BatchV1Api(api_client),
            apiextensions=client.ApiextensionsV1Api(api_client),
            custom_objects=client.CustomObjectsApi(api_client),
        )


async def call_api(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking Kubernetes client call in a worker thread."""
    return await asyncio.to_thread(fn, *args, **kwargs)


def is_not_found(error: ApiException) -> bool:
    return error.status == 404


def is_already_exists(error: ApiException) -> bool:
    return error.status == 409


def is_conflict(error: ApiException) -> bool:
    return error.status == 409


def api_error(action: str, error: ApiException) -> KubernetesAPIError:
    """Wrap an ApiException with the action that failed."""
    return KubernetesAPIError(
        f"{action}: HTTP {error.status}", reason=error.reason, cause=error
    )


async def create_if_absent(
    create_fn: Callable[..., Any], action: str, **kwargs: Any
) -> bool:
    """
    Create an object, treating "already exists" as success.

    Returns:
        True if the object was created, False if it already existed

    Raises:
        KubernetesAPIError: For any other API failure
    """
    try:
        await call_api(create_fn, **kwargs)
    except ApiException as e:
        if is_already_exists(e):
            return False
        raise api_error(action, e) from e
    return True


async def delete_all_of(
    delete_fn: Callable[..., Any], action: str, labels: dict[str, str], **kwargs: Any
) -> None:
    """Delete every object matching ``labels``; nothing to delete is fine."""
    try:
        await call_api(delete_fn, label_selector=label_selector(labels), **kwargs)
    except ApiException as e:
        if is_not_found(e):
            return
        raise api_error(action, e) from e
