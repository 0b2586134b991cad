"""
Kopf handlers for Stack resources.

All events funnel into the StackReconciler created at operator startup and
kept in ``memo``. Failed reconciliations are retried by raising the kopf
form of a retryable ReconciliationError with the dispatcher's retry delay.
"""

import logging
from typing import Any

import kopf

from stack_manager.constants import STACK_GROUP, STACK_PLURAL, STACK_VERSION
from stack_manager.errors import OperatorError, ReconciliationError
from stack_manager.services.stack_handler import ReconcileResult
from stack_manager.settings import settings as operator_settings

logger = logging.getLogger(__name__)


def _raise_for_result(result: ReconcileResult, name: str, namespace: str) -> None:
    if result.succeeded:
        return
    cause = result.error
    detail = cause.args[0] if isinstance(cause, OperatorError) and cause.args else cause
    # Every failure is retried; the Synced condition tells users what to fix
    error = ReconciliationError(
        f"Stack {namespace}/{name} failed to reconcile: {detail}",
        retryable=True,
        delay=result.requeue_after or operator_settings.retry_delay_seconds,
        user_action=getattr(cause, "user_action", None),
        cause=cause,
    )
    raise error.as_kopf_error()


@kopf.on.create(STACK_PLURAL, group=STACK_GROUP, version=STACK_VERSION)
@kopf.on.resume(STACK_PLURAL, group=STACK_GROUP, version=STACK_VERSION)
@kopf.on.update(STACK_PLURAL, group=STACK_GROUP, version=STACK_VERSION)
async def reconcile_stack(
    name: str, namespace: str, memo: kopf.Memo, **kwargs: Any
) -> None:
    """Install a new Stack or re-check an installed one."""
    result = await memo.stack_reconciler.reconcile(name, namespace)
    _raise_for_result(result, name, namespace)


@kopf.on.delete(STACK_PLURAL, group=STACK_GROUP, version=STACK_VERSION, optional=True)
async def delete_stack(name: str, namespace: str, memo: kopf.Memo, **kwargs: Any) -> None:
    """
    Uninstall a Stack marked for deletion.

    The Stack's own finalizer keeps the object around until teardown is
    complete, so kopf does not need to add one.
    """
    logger.info(f"Starting deletion of Stack {name} in namespace {namespace}")
    result = await memo.stack_reconciler.reconcile(name, namespace)
    _raise_for_result(result, name, namespace)


@kopf.timer(
    STACK_PLURAL,
    group=STACK_GROUP,
    version=STACK_VERSION,
    interval=float(operator_settings.requeue_after_success_seconds),
    initial_delay=float(operator_settings.requeue_after_success_seconds),
    idle=float(operator_settings.requeue_after_success_seconds),
)
async def recheck_stack(name: str, namespace: str, memo: kopf.Memo, **kwargs: Any) -> None:
    """
    Periodic re-check so Stacks converge without new events.

    The timer only fires once a Stack has been left unchanged for a full
    re-check interval. kopf touches the object while it retries a failed
    handler, so the timer stays out of the way of those retries.
    """
    if memo.stack_reconciler.is_reconciling(name, namespace):
        logger.debug(f"Skipping re-check of Stack {namespace}/{name}: reconcile in progress")
        return
    result = await memo.stack_reconciler.reconcile(name, namespace)
    if not result.succeeded:
        logger.warning(f"Periodic re-check of Stack {namespace}/{name} failed: {result.error}")
