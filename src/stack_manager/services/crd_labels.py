"""
Reference-counted labels on shared CustomResourceDefinitions.

Several Stacks may ship the same CRD. Instead of owning it, each install adds
a multi-parent label to the CRD, plus a namespace label that marks the CRD as
usable from the install namespace. Teardown removes only its own labels and
keeps the namespace label while another install from the same namespace
still holds one.

Label patches carry the resourceVersion that was read, so concurrent
installs touching the same CRD never overwrite each other's labels.
"""

from collections.abc import Callable, Iterable
from typing import Any

from kubernetes.client.rest import ApiException

from stack_manager.constants import (
    LABEL_VALUE_TRUE,
    MANAGED_BY_LABEL_KEY,
    MANAGED_BY_LABEL_VALUE,
)
from stack_manager.errors import CRDFulfillmentError, TemporaryError
from stack_manager.models import SchemaDescriptor, Stack
from stack_manager.observability.logging import OperatorLogger
from stack_manager.observability.metrics import MetricsCollector, metrics_collector
from stack_manager.utils.kubernetes import (
    MERGE_PATCH,
    KubeApis,
    api_error,
    call_api,
    is_conflict,
    is_not_found,
)
from stack_manager.utils.naming import (
    has_prefixed_label,
    multi_parent_label,
    multi_parent_label_prefix,
    namespace_label,
)

logger = OperatorLogger(__name__)

LabelMutation = Callable[[dict[str, str]], dict[str, str] | None]


def is_owned(labels: dict[str, str] | None) -> bool:
    """Whether a CRD was installed by the package manager."""
    return (labels or {}).get(MANAGED_BY_LABEL_KEY) == MANAGED_BY_LABEL_VALUE


def crd_matches(crd: Any, descriptor: SchemaDescriptor) -> bool:
    spec = crd.spec
    if spec.group != descriptor.group or spec.names.kind != descriptor.kind:
        return False
    return any(v.name == descriptor.version for v in spec.versions or [])


def matched_crds(descriptors: Iterable[SchemaDescriptor], crds: list[Any]) -> list[Any]:
    """CRDs matching any descriptor, each listed once in descriptor order."""
    seen: set[str] = set()
    results = []
    for descriptor in descriptors:
        for crd in crds:
            name = crd.metadata.name
            if name in seen or not crd_matches(crd, descriptor):
                continue
            seen.add(name)
            results.append(crd)
    return results


def missing_crds(
    descriptors: Iterable[SchemaDescriptor], crds: list[Any]
) -> list[tuple[str, str, str]]:
    """(group, kind, version) of every descriptor without a matching CRD."""
    return [
        descriptor.triple()
        for descriptor in descriptors
        if not any(crd_matches(crd, descriptor) for crd in crds)
    ]


def add_label(key: str) -> LabelMutation:
    """Mutation adding ``key`` to owned CRDs that do not carry it yet."""

    def mutate(labels: dict[str, str]) -> dict[str, str] | None:
        if not is_owned(labels) or key in labels:
            return None
        return {**labels, key: LABEL_VALUE_TRUE}

    return mutate


def release_labels(name: str, namespace: str) -> LabelMutation:
    """Mutation dropping one install's labels from an owned CRD."""
    parent_key = multi_parent_label(name, namespace)
    namespace_key = namespace_label(namespace)
    prefix = multi_parent_label_prefix(namespace)

    def mutate(labels: dict[str, str]) -> dict[str, str] | None:
        if not is_owned(labels):
            return None
        updated = {k: v for k, v in labels.items() if k != parent_key}
        if not has_prefixed_label(updated, prefix):
            updated.pop(namespace_key, None)
        return updated if updated != labels else None

    return mutate


def label_patch(
    before: dict[str, str], after: dict[str, str], resource_version: str | None
) -> dict[str, Any]:
    """Merge patch turning ``before`` into ``after``, guarded by resourceVersion."""
    changes: dict[str, str | None] = {
        key: value for key, value in after.items() if before.get(key) != value
    }
    changes.update({key: None for key in before if key not in after})
    return {"metadata": {"labels": changes, "resourceVersion": resource_version}}


class CRDLabelCurator:
    """Fulfillment check and label bookkeeping for a Stack's CRDs."""

    def __init__(
        self,
        kube: KubeApis,
        conflict_retries: int = 5,
        metrics: MetricsCollector = metrics_collector,
    ):
        self.kube = kube
        self.conflict_retries = conflict_retries
        self.metrics = metrics

    async def matched(self, stack: Stack) -> list[Any]:
        """Live CRDs referenced by the Stack."""
        if not stack.spec.customresourcedefinitions:
            return []
        return matched_crds(stack.spec.customresourcedefinitions, await self._list())

    async def _list(self) -> list[Any]:
        try:
            crd_list = await call_api(
                self.kube.apiextensions.list_custom_resource_definition
            )
        except ApiException as e:
            raise api_error("CRDs could not be listed", e) from e
        return list(crd_list.items or [])

    def check_fulfilled(self, stack: Stack, crds: list[Any]) -> None:
        """
        Raise unless every CRD the Stack declares is installed.

        Raises:
            CRDFulfillmentError: Listing every missing (group, kind, version)
        """
        missing = missing_crds(stack.spec.customresourcedefinitions, crds)
        if missing:
            raise CRDFulfillmentError(missing)

    async def add_namespace_labels(self, stack: Stack, crds: list[Any]) -> None:
        key = namespace_label(stack.namespace)
        await self._apply(stack, crds, add_label(key), key, "add")

    async def add_multi_parent_labels(self, stack: Stack, crds: list[Any]) -> None:
        key = multi_parent_label(stack.name, stack.namespace)
        await self._apply(stack, crds, add_label(key), key, "add")

    async def remove_labels(self, stack: Stack) -> None:
        """Release this install's claim on its CRDs."""
        crds = await self.matched(stack)
        key = multi_parent_label(stack.name, stack.namespace)
        await self._apply(
            stack, crds, release_labels(stack.name, stack.namespace), key, "remove"
        )

    async def _apply(
        self,
        stack: Stack,
        crds: list[Any],
        mutate: LabelMutation,
        label: str,
        operation: str,
    ) -> None:
        for index, crd in enumerate(crds):
            updated = await self._patch_labels(crd, mutate)
            if updated is not None:
                # Later steps patch again; keep the newest resourceVersion
                crds[index] = updated
                self.metrics.record_crd_label_patch(operation)
                logger.log_crd_label_change(
                    crd.metadata.name,
                    label,
                    operation == "add",
                    stack.name,
                    stack.namespace,
                )

    async def _patch_labels(self, crd: Any, mutate: LabelMutation) -> Any | None:
        """
        Apply ``mutate`` to the CRD labels, re-reading on conflicts.

        Returns:
            The patched CRD, or None if nothing needed to change or the CRD
            is gone
        """
        name = crd.metadata.name
        for _attempt in range(self.conflict_retries + 1):
            before = dict(crd.metadata.labels or {})
            after = mutate(before)
            if after is None:
                return None

            try:
                return await call_api(
                    self.kube.apiextensions.patch_custom_resource_definition,
                    name=name,
                    body=label_patch(before, after, crd.metadata.resource_version),
                    _content_type=MERGE_PATCH,
                )
            except ApiException as e:
                if is_not_found(e):
                    return None
                if not is_conflict(e):
                    raise api_error(f"failed to update labels of CRD {name}", e) from e

            self.metrics.record_crd_label_conflict()
            logger.debug(f"Conflict patching labels of CRD {name}, re-reading")
            try:
                crd = await call_api(
                    self.kube.apiextensions.read_custom_resource_definition, name=name
                )
            except ApiException as e:
                if is_not_found(e):
                    return None
                raise api_error(f"failed to re-read CRD {name}", e) from e

        raise TemporaryError(
            f"gave up updating labels of CRD {name} after "
            f"{self.conflict_retries + 1} conflicting attempts"
        )
