"""
Lifecycle dispatcher for Stack resources.

Every event for a Stack ends up in ``StackReconciler.reconcile``. It reads
the current object, picks the create, update or delete pipeline and turns
any failure into a ReconcileError condition plus a fixed-delay retry.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass

from stack_manager.constants import (
    CONDITION_READY,
    PHASE_AVAILABLE,
    PHASE_CREATING,
    PHASE_DELETING,
    PHASE_FAILED,
    REASON_AVAILABLE,
    REASON_CREATING,
    REASON_DELETING,
)
from stack_manager.errors import ReconcileInProgressError, ReconcileTimeoutError
from stack_manager.models import Condition, Stack
from stack_manager.observability.logging import OperatorLogger
from stack_manager.observability.metrics import MetricsCollector, metrics_collector
from stack_manager.services.stack_handler import LifecycleHandler, ReconcileResult
from stack_manager.services.stack_store import StackStore

RESOURCE_TYPE = "Stack"

HandlerFactory = Callable[[Stack], LifecycleHandler]

_PHASE_BY_READY_REASON = {
    REASON_CREATING: PHASE_CREATING,
    REASON_AVAILABLE: PHASE_AVAILABLE,
    REASON_DELETING: PHASE_DELETING,
}


def phase_of(stack: Stack) -> str:
    """Phase reported for a Stack, derived from its Ready condition."""
    ready = stack.status.condition(CONDITION_READY)
    if ready is None:
        return PHASE_CREATING
    return _PHASE_BY_READY_REASON.get(ready.reason, PHASE_CREATING)


@dataclass
class _Attempt:
    handler: LifecycleHandler | None = None


class StackReconciler:
    """
    Dispatches Stack events to lifecycle handlers.

    Args:
        store: Access to the Stack objects
        handler_factory: Builds the handler for one Stack snapshot
        reconcile_timeout: Wall-clock deadline for one reconciliation
        retry_delay: Delay before retrying a failed reconciliation
    """

    def __init__(
        self,
        store: StackStore,
        handler_factory: HandlerFactory,
        reconcile_timeout: float = 60,
        retry_delay: float = 5,
        metrics: MetricsCollector = metrics_collector,
    ):
        self.store = store
        self.handler_factory = handler_factory
        self.reconcile_timeout = reconcile_timeout
        self.retry_delay = retry_delay
        self.metrics = metrics
        self.logger = OperatorLogger(__name__)
        self._in_flight: set[tuple[str, str]] = set()

    def is_reconciling(self, name: str, namespace: str) -> bool:
        return (namespace, name) in self._in_flight

    async def reconcile(self, name: str, namespace: str) -> ReconcileResult:
        """
        Reconcile the Stack ``namespace/name``.

        Never raises for reconciliation failures; they are reported through
        the returned result and the Stack's Synced condition. A Stack that
        is already being reconciled by another kopf task is left alone and
        the caller is asked to retry.
        """
        key = (namespace, name)
        if key in self._in_flight:
            self.logger.debug(f"Stack {namespace}/{name} is already being reconciled")
            return ReconcileResult(
                requeue_after=self.retry_delay,
                error=ReconcileInProgressError(name, namespace),
            )

        self._in_flight.add(key)
        try:
            return await self._reconcile(name, namespace)
        finally:
            self._in_flight.discard(key)

    async def _reconcile(self, name: str, namespace: str) -> ReconcileResult:
        self.logger.log_reconciliation_start(RESOURCE_TYPE, name, namespace)
        started = time.time()
        attempt = _Attempt()

        try:
            async with self.metrics.track_reconciliation(RESOURCE_TYPE, namespace, name):
                result = await asyncio.wait_for(
                    self._dispatch(name, namespace, attempt),
                    timeout=self.reconcile_timeout,
                )
        except TimeoutError:
            error: Exception = ReconcileTimeoutError(self.reconcile_timeout)
        except Exception as e:
            error = e
        else:
            self.logger.log_reconciliation_success(
                RESOURCE_TYPE, name, namespace, time.time() - started
            )
            return result

        self.logger.log_reconciliation_error(
            RESOURCE_TYPE, name, namespace, error, time.time() - started
        )
        return await self._fail(attempt, error)

    async def _dispatch(
        self, name: str, namespace: str, attempt: _Attempt
    ) -> ReconcileResult:
        stack = await self.store.get(name, namespace)
        if stack is None:
            self.logger.debug(f"Stack {namespace}/{name} no longer exists")
            self.metrics.forget_stack(namespace, name)
            return ReconcileResult()

        handler = self.handler_factory(stack)
        attempt.handler = handler

        if stack.is_deleting:
            self.metrics.update_stack_phase(namespace, name, PHASE_DELETING)
            result = await handler.delete()
            self.metrics.forget_stack(namespace, name)
            return result

        self.metrics.update_stack_phase(namespace, name, phase_of(stack))
        result = await handler.sync()
        self.metrics.update_stack_phase(namespace, name, phase_of(handler.stack))
        return result

    async def _fail(self, attempt: _Attempt, error: Exception) -> ReconcileResult:
        """Record ``error`` on the Stack and schedule a retry."""
        result = ReconcileResult(requeue_after=self.retry_delay, error=error)
        if attempt.handler is None:
            return result

        stack = attempt.handler.stack
        self.metrics.update_stack_phase(stack.namespace, stack.name, PHASE_FAILED)
        failed = stack.with_conditions(Condition.reconcile_error(error))
        try:
            attempt.handler.stack = await self.store.update_status(failed)
        except Exception as e:
            self.logger.warning(
                f"Cannot record failure on stack {stack.namespace}/{stack.name}: {e}",
                resource_name=stack.name,
                namespace=stack.namespace,
                error_type=type(e).__name__,
            )
        return result
