"""
The Stack's own controller workload.

A Stack may ship a Deployment or a Job template for its controller. The
template is forced onto Stack-specific names, labels and service account.
In host-aware mode the workload is relocated into the host cluster and its
pods are rewired to talk to the tenant API with a copied token.
"""

import copy
from dataclasses import dataclass
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from stack_manager.constants import (
    CONTROLLER_SELECTOR_LABEL,
    ENV_KUBERNETES_SERVICE_HOST,
    ENV_KUBERNETES_SERVICE_PORT,
    ENV_POD_NAMESPACE,
    SA_TOKEN_MOUNT_PATH,
    SA_TOKEN_VOLUME_NAME,
)
from stack_manager.errors import HostAwareModeNotEnabledError
from stack_manager.models import ObjectReference, Stack
from stack_manager.observability.logging import OperatorLogger
from stack_manager.utils.hosted import HostAwareConfig, annotations_on_host
from stack_manager.utils.kubernetes import (
    KubeApis,
    api_error,
    call_api,
    is_not_found,
)
from stack_manager.utils.naming import controller_workload_name, parent_labels

logger = OperatorLogger(__name__)

DEPLOYMENT = "Deployment"
JOB = "Job"

_API_VERSIONS = {DEPLOYMENT: "apps/v1", JOB: "batch/v1"}


@dataclass(frozen=True)
class PreparedWorkload:
    """A controller manifest ready to be created, plus host-aware refs."""

    kind: str
    manifest: dict[str, Any]
    service_account_ref: ObjectReference | None = None
    token_secret_ref: ObjectReference | None = None

    @property
    def api_version(self) -> str:
        return _API_VERSIONS[self.kind]

    @property
    def name(self) -> str:
        return self.manifest["metadata"]["name"]

    @property
    def namespace(self) -> str:
        return self.manifest["metadata"]["namespace"]


def _pod_template(manifest: dict[str, Any]) -> dict[str, Any]:
    spec = manifest.setdefault("spec", {})
    template = spec.setdefault("template", {})
    template.setdefault("metadata", {})
    template.setdefault("spec", {})
    return template


class WorkloadPreparer:
    def __init__(self, host_kube: KubeApis, host_aware: HostAwareConfig | None = None):
        """
        Args:
            host_kube: API groups of the cluster running the workload. In
                single cluster mode this is the tenant cluster.
            host_aware: Host-aware configuration, None in single cluster mode
        """
        self.host_kube = host_kube
        self.host_aware = host_aware

    def prepare(self, stack: Stack) -> PreparedWorkload | None:
        """Build the controller manifest, or None when the Stack ships none."""
        controller = stack.spec.controller
        if controller.deployment is not None:
            kind, template = DEPLOYMENT, controller.deployment
        elif controller.job is not None:
            kind, template = JOB, controller.job
        else:
            return None

        name = controller_workload_name(stack.name)
        match_labels = {CONTROLLER_SELECTOR_LABEL: name}

        manifest: dict[str, Any] = {
            "apiVersion": _API_VERSIONS[kind],
            "kind": kind,
            "metadata": {
                "name": name,
                "namespace": stack.namespace,
                "labels": parent_labels(stack.name, stack.namespace),
            },
            "spec": copy.deepcopy(template.spec),
        }

        pod_template = _pod_template(manifest)
        pod_template["spec"]["serviceAccountName"] = stack.name
        pod_template["metadata"]["name"] = name
        pod_template["metadata"]["labels"] = {
            **(pod_template["metadata"].get("labels") or {}),
            **match_labels,
        }
        if kind == DEPLOYMENT:
            manifest["spec"]["selector"] = {"matchLabels": dict(match_labels)}

        if self.host_aware is None:
            return PreparedWorkload(kind=kind, manifest=manifest)

        sa_ref = ObjectReference(name=stack.name, namespace=stack.namespace)
        secret_ref = self.host_aware.object_reference_on_host(
            sa_ref.name, sa_ref.namespace
        )
        self.relocate_to_host(stack, manifest, secret_ref.name)
        return PreparedWorkload(
            kind=kind,
            manifest=manifest,
            service_account_ref=sa_ref,
            token_secret_ref=secret_ref,
        )

    def rewrite_pod_spec(
        self, pod_spec: dict[str, Any], token_secret: str, install_namespace: str
    ) -> None:
        """
        Point pods at the tenant API using a mounted copy of the token.

        Raises:
            HostAwareModeNotEnabledError: If there is no host-aware configuration
        """
        if self.host_aware is None:
            raise HostAwareModeNotEnabledError()

        pod_spec["automountServiceAccountToken"] = False
        pod_spec.pop("serviceAccountName", None)
        pod_spec.pop("serviceAccount", None)

        pod_spec.setdefault("volumes", []).append(
            {"name": SA_TOKEN_VOLUME_NAME, "secret": {"secretName": token_secret}}
        )
        for container in pod_spec.get("containers") or []:
            container.setdefault("env", []).extend(
                [
                    {
                        "name": ENV_KUBERNETES_SERVICE_HOST,
                        "value": self.host_aware.tenant_api_service_host,
                    },
                    {
                        "name": ENV_KUBERNETES_SERVICE_PORT,
                        "value": self.host_aware.tenant_api_service_port,
                    },
                    # Without this pods see the host namespace they run in
                    {"name": ENV_POD_NAMESPACE, "value": install_namespace},
                ]
            )
            container.setdefault("volumeMounts", []).append(
                {
                    "name": SA_TOKEN_VOLUME_NAME,
                    "readOnly": True,
                    "mountPath": SA_TOKEN_MOUNT_PATH,
                }
            )

    def relocate_to_host(
        self, stack: Stack, manifest: dict[str, Any], token_secret: str
    ) -> None:
        """Move a prepared manifest into the host controller namespace."""
        if self.host_aware is None:
            raise HostAwareModeNotEnabledError()

        self.rewrite_pod_spec(_pod_template(manifest)["spec"], token_secret, stack.namespace)

        metadata = manifest["metadata"]
        target = self.host_aware.object_reference_on_host(
            metadata["name"], metadata["namespace"]
        )
        metadata["name"] = target.name
        metadata["namespace"] = target.namespace
        metadata["annotations"] = {
            **(metadata.get("annotations") or {}),
            **annotations_on_host("stack", stack.name, stack.namespace),
        }

    async def ensure(self, workload: PreparedWorkload) -> Any:
        """Get the workload, creating it when it does not exist yet."""
        if workload.kind == DEPLOYMENT:
            read = self.host_kube.apps.read_namespaced_deployment
            create = self.host_kube.apps.create_namespaced_deployment
        else:
            read = self.host_kube.batch.read_namespaced_job
            create = self.host_kube.batch.create_namespaced_job
        kind = workload.kind.lower()

        try:
            return await call_api(read, name=workload.name, namespace=workload.namespace)
        except ApiException as e:
            if not is_not_found(e):
                raise api_error(f"failed to get {kind}", e) from e

        try:
            created = await call_api(
                create, namespace=workload.namespace, body=workload.manifest
            )
        except ApiException as e:
            raise api_error(f"failed to create {kind}", e) from e

        logger.info(
            f"Created controller {kind} {workload.namespace}/{workload.name}",
            resource_name=workload.name,
            namespace=workload.namespace,
            operation=f"create_{kind}",
        )
        return created


def reference_to(workload: PreparedWorkload, obj: Any) -> ObjectReference:
    """ObjectReference to a created workload object."""
    return ObjectReference(
        api_version=workload.api_version,
        kind=workload.kind,
        name=obj.metadata.name,
        namespace=obj.metadata.namespace,
        uid=obj.metadata.uid,
    )


def owner_reference_to(ref: ObjectReference) -> client.V1OwnerReference:
    return client.V1OwnerReference(
        api_version=ref.api_version, kind=ref.kind, name=ref.name, uid=ref.uid
    )
