"""Tests for Kubernetes API helpers."""

from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException

from stack_manager.errors import ConfigurationError, KubernetesAPIError
from stack_manager.utils.kubernetes import (
    api_error,
    create_if_absent,
    delete_all_of,
    ensure_distinct_clusters,
    get_kubernetes_client,
)


class TestCreateIfAbsent:
    @pytest.mark.asyncio
    async def test_created(self):
        create = MagicMock()

        assert await create_if_absent(create, "failed", body={"kind": "X"}) is True
        create.assert_called_once_with(body={"kind": "X"})

    @pytest.mark.asyncio
    async def test_already_exists(self):
        create = MagicMock(side_effect=ApiException(status=409, reason="AlreadyExists"))

        assert await create_if_absent(create, "failed", body={}) is False

    @pytest.mark.asyncio
    async def test_other_errors_are_wrapped(self):
        create = MagicMock(side_effect=ApiException(status=422, reason="Invalid"))

        with pytest.raises(KubernetesAPIError) as exc_info:
            await create_if_absent(create, "failed to create thing", body={})

        assert "failed to create thing: HTTP 422" in exc_info.value.args[0]
        assert exc_info.value.retryable is False
        assert isinstance(exc_info.value.cause, ApiException)


class TestDeleteAllOf:
    @pytest.mark.asyncio
    async def test_uses_label_selector(self):
        delete = MagicMock()

        await delete_all_of(delete, "failed", {"b": "2", "a": "1"}, namespace="tenant")

        delete.assert_called_once_with(label_selector="a=1,b=2", namespace="tenant")

    @pytest.mark.asyncio
    async def test_not_found_is_fine(self):
        delete = MagicMock(side_effect=ApiException(status=404, reason="Not Found"))

        await delete_all_of(delete, "failed", {"a": "1"})

    @pytest.mark.asyncio
    async def test_failure(self):
        delete = MagicMock(side_effect=ApiException(status=500, reason="InternalError"))

        with pytest.raises(KubernetesAPIError):
            await delete_all_of(delete, "cannot delete", {"a": "1"})


def test_api_error_keeps_reason():
    error = api_error("cannot get", ApiException(status=403, reason="Forbidden"))

    assert "(reason: Forbidden)" in error.args[0]
    assert not error.retryable


def client_for(host: str) -> MagicMock:
    api_client = MagicMock()
    api_client.configuration.host = host
    return api_client


class TestClusterClients:
    def test_kubeconfig_only_for_host_aware_tenant(self):
        with patch("stack_manager.utils.kubernetes.config") as kube_config:
            get_kubernetes_client(prefer_kubeconfig=True)

        kube_config.load_kube_config.assert_called_once_with()
        kube_config.load_incluster_config.assert_not_called()

    def test_same_api_server_is_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            ensure_distinct_clusters(
                client_for("https://10.96.0.1:443"), client_for("https://10.96.0.1:443")
            )

        assert "https://10.96.0.1:443" in exc_info.value.args[0]
        assert not exc_info.value.retryable

    def test_distinct_api_servers(self):
        ensure_distinct_clusters(
            client_for("https://tenant.example.org:6443"), client_for("https://10.96.0.1:443")
        )
