"""Shared fixtures for Stack manager unit tests."""

from unittest.mock import MagicMock

import pytest

from stack_manager.observability.metrics import MetricsCollector
from stack_manager.utils.hosted import HostAwareConfig
from tests.utils.fake_kube import FakeCluster


@pytest.fixture
def tenant() -> FakeCluster:
    """The cluster holding Stack objects, CRDs and RBAC."""
    return FakeCluster()


@pytest.fixture
def host() -> FakeCluster:
    """The cluster running relocated controllers in host-aware mode."""
    return FakeCluster()


@pytest.fixture
def host_aware() -> HostAwareConfig:
    return HostAwareConfig(
        host_controller_namespace="host-controllers",
        tenant_api_service_host="10.96.0.1",
        tenant_api_service_port="6443",
    )


@pytest.fixture
def metrics() -> MagicMock:
    return MagicMock(spec=MetricsCollector)
