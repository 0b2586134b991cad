"""
Host-aware topology configuration.

In host-aware mode Stack resources live in a tenant cluster while Stack
controllers run in a separate host cluster. Objects relocated to the host
are renamed so that installs from different tenant namespaces never clash.
"""

from dataclasses import dataclass
from urllib.parse import urlparse

from stack_manager.constants import (
    HOST_NAME_ANNOTATION_FORMAT,
    HOST_NAMESPACE_ANNOTATION_FORMAT,
)
from stack_manager.errors import ConfigurationError
from stack_manager.models import ObjectReference
from stack_manager.utils.naming import truncate

_DEFAULT_PORTS = {"https": "443", "http": "80"}


@dataclass(frozen=True)
class HostAwareConfig:
    """Where relocated controllers run and how they reach the tenant API."""

    host_controller_namespace: str
    tenant_api_service_host: str
    tenant_api_service_port: str

    @classmethod
    def for_host(
        cls, host_controller_namespace: str, tenant_api_url: str
    ) -> "HostAwareConfig | None":
        """
        Build the configuration, or None when running in single cluster mode.

        Args:
            host_controller_namespace: Host namespace for controllers; empty
                disables host-aware mode
            tenant_api_url: Tenant API server URL, e.g. ``https://10.0.0.1:6443``

        Raises:
            ConfigurationError: If host-aware mode is enabled without a
                usable tenant API URL
        """
        if not host_controller_namespace:
            return None

        url = tenant_api_url if "://" in tenant_api_url else f"https://{tenant_api_url}"
        parsed = urlparse(url)
        if not parsed.hostname:
            raise ConfigurationError(
                f"cannot parse tenant API host from {tenant_api_url!r}",
                user_action="Set TENANT_API_URL to the tenant API server URL",
            )
        try:
            port = parsed.port
        except ValueError as e:
            raise ConfigurationError(
                f"invalid tenant API port in {tenant_api_url!r}: {e}"
            ) from e

        return cls(
            host_controller_namespace=host_controller_namespace,
            tenant_api_service_host=parsed.hostname,
            tenant_api_service_port=str(port)
            if port is not None
            else _DEFAULT_PORTS.get(parsed.scheme, "443"),
        )

    def object_reference_on_host(self, name: str, namespace: str) -> ObjectReference:
        """Where a tenant object named ``namespace/name`` lives on the host."""
        return ObjectReference(
            name=truncate(f"{namespace}.{name}"),
            namespace=self.host_controller_namespace,
        )


def annotations_on_host(kind: str, name: str, namespace: str) -> dict[str, str]:
    """Back-reference annotations for an object relocated to the host."""
    return {
        HOST_NAME_ANNOTATION_FORMAT.format(kind=kind): name,
        HOST_NAMESPACE_ANNOTATION_FORMAT.format(kind=kind): namespace,
    }
