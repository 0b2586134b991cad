"""
Service identity and permission grants for a Stack's controller.

The Stack asks for a set of policy rules. They are granted to a
ServiceAccount named after the Stack through a "system" ClusterRole, bound
either namespace-wide or cluster-wide depending on the permission scope.
"""

from kubernetes import client

from stack_manager.constants import (
    PERMISSION_SCOPE_CLUSTER,
    PERMISSION_SCOPE_NAMESPACED,
)
from stack_manager.errors import PermissionScopeError
from stack_manager.models import Stack
from stack_manager.observability.logging import OperatorLogger
from stack_manager.utils.kubernetes import KubeApis, create_if_absent
from stack_manager.utils.naming import (
    cluster_role_binding_name,
    parent_labels,
    system_role_name,
)

logger = OperatorLogger(__name__)

RBAC_API_GROUP = "rbac.authorization.k8s.io"


def is_namespaced_scope(scope: str) -> bool:
    return scope in ("", PERMISSION_SCOPE_NAMESPACED)


def validate_permission_scope(scope: str) -> None:
    if scope not in ("", PERMISSION_SCOPE_NAMESPACED, PERMISSION_SCOPE_CLUSTER):
        raise PermissionScopeError(scope)


class RBACProvisioner:
    """Creates the ServiceAccount, system ClusterRole and binding of a Stack."""

    def __init__(self, kube: KubeApis):
        self.kube = kube

    async def provision(self, stack: Stack) -> str | None:
        """
        Grant the Stack's declared rules to its service account.

        Every create tolerates "already exists" so the call is idempotent.

        Args:
            stack: Stack snapshot being installed

        Returns:
            Name of the system ClusterRole, or None when the Stack declares
            no rules and nothing was provisioned

        Raises:
            PermissionScopeError: If the permission scope is not recognized
            KubernetesAPIError: If an object cannot be created
        """
        if not stack.spec.permissions.rules:
            return None

        scope = stack.spec.permission_scope
        validate_permission_scope(scope)

        await self._create_service_account(stack)
        role_name = await self._create_system_role(stack)

        if is_namespaced_scope(scope):
            await self._create_role_binding(stack, role_name)
        else:
            await self._create_cluster_role_binding(stack, role_name)

        logger.info(
            f"Provisioned RBAC for stack {stack.namespace}/{stack.name}",
            resource_name=stack.name,
            namespace=stack.namespace,
            operation="provision_rbac",
        )
        return role_name

    async def _create_service_account(self, stack: Stack) -> None:
        options = stack.spec.controller.service_account
        sa = client.V1ServiceAccount(
            metadata=client.V1ObjectMeta(
                name=stack.name,
                namespace=stack.namespace,
                owner_references=[stack.owner_reference()],
                annotations=dict(options.annotations) if options else None,
            )
        )
        await create_if_absent(
            self.kube.core.create_namespaced_service_account,
            "failed to create service account",
            namespace=stack.namespace,
            body=sa,
        )

    async def _create_system_role(self, stack: Stack) -> str:
        name = system_role_name(stack.name, stack.namespace)
        role = client.V1ClusterRole(
            metadata=client.V1ObjectMeta(
                name=name, labels=parent_labels(stack.name, stack.namespace)
            ),
            rules=[rule.to_k8s() for rule in stack.spec.permissions.rules],
        )
        await create_if_absent(
            self.kube.rbac.create_cluster_role,
            "failed to create cluster role",
            body=role,
        )
        return name

    def _subjects(self, stack: Stack) -> list[client.RbacV1Subject]:
        return [
            client.RbacV1Subject(
                kind="ServiceAccount", name=stack.name, namespace=stack.namespace
            )
        ]

    def _role_ref(self, role_name: str) -> client.V1RoleRef:
        return client.V1RoleRef(
            api_group=RBAC_API_GROUP, kind="ClusterRole", name=role_name
        )

    async def _create_role_binding(self, stack: Stack, role_name: str) -> None:
        binding = client.V1RoleBinding(
            metadata=client.V1ObjectMeta(
                name=stack.name,
                namespace=stack.namespace,
                owner_references=[stack.owner_reference()],
            ),
            role_ref=self._role_ref(role_name),
            subjects=self._subjects(stack),
        )
        await create_if_absent(
            self.kube.rbac.create_namespaced_role_binding,
            "failed to create role binding",
            namespace=stack.namespace,
            body=binding,
        )

    async def _create_cluster_role_binding(self, stack: Stack, role_name: str) -> None:
        binding = client.V1ClusterRoleBinding(
            metadata=client.V1ObjectMeta(
                name=cluster_role_binding_name(stack.name, stack.namespace),
                labels=parent_labels(stack.name, stack.namespace),
            ),
            role_ref=self._role_ref(role_name),
            subjects=self._subjects(stack),
        )
        await create_if_absent(
            self.kube.rbac.create_cluster_role_binding,
            "failed to create cluster role binding",
            body=binding,
        )
