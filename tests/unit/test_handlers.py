"""Tests for the kopf entry points of Stack events."""

from unittest.mock import AsyncMock, MagicMock, patch

import kopf
import pytest

from stack_manager.errors import ConfigurationError, PermissionScopeError, StepError
from stack_manager.handlers.stack import delete_stack, reconcile_stack, recheck_stack
from stack_manager.operator import build_reconciler, load_cluster_clients
from stack_manager.services.stack_handler import ReconcileResult, StackHandlerFactory
from stack_manager.services.stack_reconciler import StackReconciler
from stack_manager.settings import settings as operator_settings


def memo_with(result: ReconcileResult) -> MagicMock:
    memo = MagicMock()
    memo.stack_reconciler.reconcile = AsyncMock(return_value=result)
    memo.stack_reconciler.is_reconciling = MagicMock(return_value=False)
    return memo


@pytest.mark.asyncio
async def test_success_returns_quietly():
    memo = memo_with(ReconcileResult(requeue_after=10))

    await reconcile_stack(name="demo", namespace="tenant", memo=memo)

    memo.stack_reconciler.reconcile.assert_awaited_once_with("demo", "tenant")


@pytest.mark.asyncio
async def test_failure_is_retried_after_delay():
    error = StepError("failed to add finalizer", RuntimeError("boom"))
    memo = memo_with(ReconcileResult(requeue_after=5, error=error))

    with pytest.raises(kopf.TemporaryError) as exc_info:
        await reconcile_stack(name="demo", namespace="tenant", memo=memo)

    assert exc_info.value.delay == 5
    assert "failed to add finalizer" in str(exc_info.value)


@pytest.mark.asyncio
async def test_delete_failure_is_retried():
    memo = memo_with(ReconcileResult(requeue_after=5, error=RuntimeError("boom")))

    with pytest.raises(kopf.TemporaryError):
        await delete_stack(name="demo", namespace="tenant", memo=memo)


@pytest.mark.asyncio
async def test_recheck_failure_does_not_raise():
    memo = memo_with(ReconcileResult(requeue_after=5, error=RuntimeError("boom")))

    await recheck_stack(name="demo", namespace="tenant", memo=memo)

    memo.stack_reconciler.reconcile.assert_awaited_once()


@pytest.mark.asyncio
async def test_recheck_skips_stack_being_reconciled():
    memo = memo_with(ReconcileResult())
    memo.stack_reconciler.is_reconciling.return_value = True

    await recheck_stack(name="demo", namespace="tenant", memo=memo)

    memo.stack_reconciler.reconcile.assert_not_awaited()


@pytest.mark.asyncio
async def test_configuration_failure_is_still_retried():
    error = StepError("failed to create RBAC permissions", PermissionScopeError("Global"))
    memo = memo_with(ReconcileResult(requeue_after=5, error=error))

    with pytest.raises(kopf.TemporaryError) as exc_info:
        await reconcile_stack(name="demo", namespace="tenant", memo=memo)

    assert exc_info.value.delay == 5
    assert str(exc_info.value).count("Action required") == 1
    assert "Set spec.permissionScope to Namespaced or Cluster" in str(exc_info.value)


def test_build_reconciler_uses_settings(tenant):
    reconciler = build_reconciler(tenant.apis(), None, None)

    assert isinstance(reconciler, StackReconciler)
    assert isinstance(reconciler.handler_factory, StackHandlerFactory)
    assert reconciler.retry_delay == 5
    assert reconciler.reconcile_timeout == 60
    assert reconciler.handler_factory.services.host_kube == tenant.apis()


class TestLoadClusterClients:
    @pytest.fixture
    def loaders(self):
        with (
            patch("stack_manager.operator.get_kubernetes_client") as tenant_loader,
            patch("stack_manager.operator.get_host_kubernetes_client") as host_loader,
        ):
            tenant_loader.return_value.configuration.host = "https://tenant.example.org:6443"
            host_loader.return_value.configuration.host = "https://10.96.0.1:443"
            yield tenant_loader, host_loader

    def test_single_cluster(self, loaders, monkeypatch):
        monkeypatch.setattr(operator_settings, "host_controller_namespace", "")
        tenant_loader, host_loader = loaders

        tenant_client, host_client = load_cluster_clients()

        assert tenant_client is tenant_loader.return_value
        assert host_client is None
        tenant_loader.assert_called_once_with()
        host_loader.assert_not_called()

    def test_in_cluster_host_loads_tenant_from_kubeconfig(self, loaders, monkeypatch):
        monkeypatch.setattr(operator_settings, "host_controller_namespace", "hc")
        monkeypatch.setattr(operator_settings, "host_kubeconfig", "")
        tenant_loader, host_loader = loaders

        _, host_client = load_cluster_clients()

        tenant_loader.assert_called_once_with(prefer_kubeconfig=True)
        host_loader.assert_called_once_with("")
        assert host_client is host_loader.return_value

    def test_host_kubeconfig_keeps_in_cluster_tenant(self, loaders, monkeypatch):
        monkeypatch.setattr(operator_settings, "host_controller_namespace", "hc")
        monkeypatch.setattr(operator_settings, "host_kubeconfig", "/etc/host/kubeconfig")
        tenant_loader, host_loader = loaders

        load_cluster_clients()

        tenant_loader.assert_called_once_with(prefer_kubeconfig=False)
        host_loader.assert_called_once_with("/etc/host/kubeconfig")

    def test_same_cluster_is_rejected(self, loaders, monkeypatch):
        monkeypatch.setattr(operator_settings, "host_controller_namespace", "hc")
        monkeypatch.setattr(operator_settings, "host_kubeconfig", "")
        _, host_loader = loaders
        host_loader.return_value.configuration.host = "https://tenant.example.org:6443"

        with pytest.raises(ConfigurationError):
            load_cluster_clients()
