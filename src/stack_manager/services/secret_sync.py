"""
Copy a ServiceAccount token secret from the tenant cluster to the host.

Controllers relocated to the host cluster authenticate against the tenant
API with the token of the Stack's ServiceAccount, mounted from this copy.
"""

from kubernetes import client
from kubernetes.client.rest import ApiException

from stack_manager.errors import (
    ServiceAccountNotFoundError,
    ServiceAccountTokenNotReadyError,
)
from stack_manager.models import ObjectReference
from stack_manager.observability.logging import OperatorLogger
from stack_manager.observability.metrics import MetricsCollector, metrics_collector
from stack_manager.utils.kubernetes import (
    KubeApis,
    api_error,
    call_api,
    create_if_absent,
    is_not_found,
)

logger = OperatorLogger(__name__)


class SecretSyncer:
    def __init__(
        self,
        kube: KubeApis,
        host_kube: KubeApis,
        metrics: MetricsCollector = metrics_collector,
    ):
        self.kube = kube
        self.host_kube = host_kube
        self.metrics = metrics

    async def sync(
        self,
        owner: client.V1OwnerReference,
        service_account: ObjectReference,
        target: ObjectReference,
    ) -> None:
        """
        Copy the token secret of ``service_account`` to ``target`` on the host.

        An existing target secret is left as is.

        Args:
            owner: Host object owning the copy, usually the controller workload
            service_account: ServiceAccount in the tenant cluster
            target: Name and namespace of the copy in the host cluster

        Raises:
            ServiceAccountNotFoundError: If the ServiceAccount does not exist
            ServiceAccountTokenNotReadyError: If no token secret is referenced yet
            KubernetesAPIError: If reading or creating a secret fails
        """
        try:
            sa = await call_api(
                self.kube.core.read_namespaced_service_account,
                name=service_account.name,
                namespace=service_account.namespace,
            )
        except ApiException as e:
            self.metrics.record_secret_sync("error")
            if is_not_found(e):
                raise ServiceAccountNotFoundError(
                    service_account.name, service_account.namespace
                ) from e
            raise api_error("failed to get service account", e) from e

        if not sa.secrets:
            self.metrics.record_secret_sync("pending")
            raise ServiceAccountTokenNotReadyError(
                service_account.name, service_account.namespace
            )

        try:
            token_secret = await call_api(
                self.kube.core.read_namespaced_secret,
                name=sa.secrets[0].name,
                namespace=service_account.namespace,
            )
        except ApiException as e:
            self.metrics.record_secret_sync("error")
            raise api_error("failed to get service account token secret", e) from e

        copy = client.V1Secret(
            metadata=client.V1ObjectMeta(
                name=target.name,
                namespace=target.namespace,
                owner_references=[owner],
            ),
            data=dict(token_secret.data or {}),
        )
        created = await create_if_absent(
            self.host_kube.core.create_namespaced_secret,
            "failed to create sa token secret on host cluster",
            namespace=target.namespace,
            body=copy,
        )
        self.metrics.record_secret_sync("created" if created else "exists")
        if created:
            logger.info(
                f"Copied token secret of {service_account.namespace}/"
                f"{service_account.name} to {target.namespace}/{target.name}",
                resource_name=service_account.name,
                namespace=service_account.namespace,
                operation="sync_token_secret",
            )
