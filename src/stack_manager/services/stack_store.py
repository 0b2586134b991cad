"""
Reads and writes of the Stack object itself.

Every write returns a fresh snapshot built from the API server response so
callers always continue with the latest resourceVersion.
"""

import logging

from kubernetes.client.rest import ApiException

from stack_manager.constants import (
    STACK_FINALIZER,
    STACK_GROUP,
    STACK_PLURAL,
    STACK_VERSION,
)
from stack_manager.models import Stack
from stack_manager.utils.kubernetes import (
    MERGE_PATCH,
    KubeApis,
    api_error,
    call_api,
    is_not_found,
)

logger = logging.getLogger(__name__)


class StackStore:
    def __init__(self, kube: KubeApis):
        self.kube = kube

    async def get(self, name: str, namespace: str) -> Stack | None:
        """Fetch a Stack snapshot, or None when it no longer exists."""
        try:
            body = await call_api(
                self.kube.custom_objects.get_namespaced_custom_object,
                group=STACK_GROUP,
                version=STACK_VERSION,
                namespace=namespace,
                plural=STACK_PLURAL,
                name=name,
            )
        except ApiException as e:
            if is_not_found(e):
                return None
            raise api_error(f"cannot get stack {namespace}/{name}", e) from e
        return Stack.from_k8s(body)

    async def add_finalizer(self, stack: Stack) -> Stack:
        if STACK_FINALIZER in stack.metadata.finalizers:
            return stack
        return await self._patch_finalizers(
            stack, [*stack.metadata.finalizers, STACK_FINALIZER]
        )

    async def remove_finalizer(self, stack: Stack) -> Stack:
        if STACK_FINALIZER not in stack.metadata.finalizers:
            return stack
        remaining = [f for f in stack.metadata.finalizers if f != STACK_FINALIZER]
        return await self._patch_finalizers(stack, remaining)

    async def _patch_finalizers(self, stack: Stack, finalizers: list[str]) -> Stack:
        body = {
            "metadata": {
                "finalizers": finalizers,
                "resourceVersion": stack.metadata.resource_version,
            }
        }
        try:
            response = await call_api(
                self.kube.custom_objects.patch_namespaced_custom_object,
                group=STACK_GROUP,
                version=STACK_VERSION,
                namespace=stack.namespace,
                plural=STACK_PLURAL,
                name=stack.name,
                body=body,
                _content_type=MERGE_PATCH,
            )
        except ApiException as e:
            raise api_error("cannot update stack finalizers", e) from e

        logger.debug(
            f"Set finalizers of stack {stack.namespace}/{stack.name} to {finalizers}"
        )
        # Keep the local status; the response may predate pending status writes
        return Stack.from_k8s(response).with_status(stack.status)

    async def update_status(self, stack: Stack) -> Stack:
        """Persist the status subresource of ``stack``."""
        try:
            response = await call_api(
                self.kube.custom_objects.patch_namespaced_custom_object_status,
                group=STACK_GROUP,
                version=STACK_VERSION,
                namespace=stack.namespace,
                plural=STACK_PLURAL,
                name=stack.name,
                body={"status": stack.status.to_k8s()},
                _content_type=MERGE_PATCH,
            )
        except ApiException as e:
            if is_not_found(e):
                logger.debug(
                    f"Stack {stack.namespace}/{stack.name} is gone, status not persisted"
                )
                return stack
            raise api_error("cannot update stack status", e) from e
        return Stack.from_k8s(response)
