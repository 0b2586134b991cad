"""
Admin, edit and view ClusterRoles for the CRDs a Stack ships.

Each role carries an aggregation label so cluster-wide or namespace-wide
persona roles pick up the Stack's resources automatically.
"""

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from kubernetes import client

from stack_manager.constants import (
    LABEL_VALUE_TRUE,
    SCOPE_ENVIRONMENT,
    SCOPE_NAMESPACE,
)
from stack_manager.models import Stack
from stack_manager.observability.logging import OperatorLogger
from stack_manager.services.rbac_provisioner import is_namespaced_scope
from stack_manager.utils.kubernetes import KubeApis, create_if_absent
from stack_manager.utils.naming import (
    aggregation_label,
    namespace_label,
    parent_labels,
    persona_role_name,
)

logger = OperatorLogger(__name__)

_WRITE_VERBS = (
    "get",
    "list",
    "watch",
    "create",
    "delete",
    "deletecollection",
    "patch",
    "update",
)

PersonaVerbTable = Mapping[str, tuple[str, ...]]

DEFAULT_PERSONA_VERBS: PersonaVerbTable = MappingProxyType(
    {
        "admin": _WRITE_VERBS,
        "edit": _WRITE_VERBS,
        "view": ("get", "list", "watch"),
    }
)


def crd_resources(crd: Any) -> list[str]:
    """Plural of a CRD plus the subresources any of its versions serve."""
    plural = crd.spec.names.plural
    resources = [plural]
    subresources = [v.subresources for v in crd.spec.versions or [] if v.subresources]
    if any(s.status is not None for s in subresources):
        resources.append(f"{plural}/status")
    if any(s.scale is not None for s in subresources):
        resources.append(f"{plural}/scale")
    return resources


class PersonaRoleBuilder:
    """Builds and creates persona ClusterRoles for a Stack install."""

    def __init__(self, kube: KubeApis, verbs: PersonaVerbTable = DEFAULT_PERSONA_VERBS):
        self.kube = kube
        self.verbs = verbs

    def build(self, stack: Stack, crds: list[Any]) -> list[client.V1ClusterRole]:
        """ClusterRoles for every persona, in verb table order."""
        namespaced = is_namespaced_scope(stack.spec.permission_scope)
        scope = SCOPE_NAMESPACE if namespaced else SCOPE_ENVIRONMENT

        roles = []
        for persona, verbs in self.verbs.items():
            labels = parent_labels(stack.name, stack.namespace)
            if namespaced:
                labels[namespace_label(stack.namespace)] = LABEL_VALUE_TRUE
            labels[aggregation_label(scope, persona)] = LABEL_VALUE_TRUE

            rules = [
                client.V1PolicyRule(
                    api_groups=[crd.spec.group],
                    resources=crd_resources(crd),
                    verbs=list(verbs),
                )
                for crd in crds
            ]
            roles.append(
                client.V1ClusterRole(
                    metadata=client.V1ObjectMeta(
                        name=persona_role_name(stack.name, stack.namespace, persona),
                        labels=labels,
                    ),
                    rules=rules,
                )
            )
        return roles

    async def create(self, stack: Stack, crds: list[Any]) -> None:
        """
        Create the persona roles.

        Roles that already exist are left untouched, even when the Stack's
        CRDs have changed since they were created.
        """
        for role in self.build(stack, crds):
            created = await create_if_absent(
                self.kube.rbac.create_cluster_role,
                "failed to create persona cluster roles",
                body=role,
            )
            if created:
                logger.debug(
                    f"Created persona cluster role {role.metadata.name}",
                    resource_name=stack.name,
                    namespace=stack.namespace,
                )
