"""
Services implementing the Stack install and uninstall lifecycle.

Leaf services each own one concern (RBAC, CRD labels, persona roles,
controller workload, token secret sync). StackHandler sequences them and
StackReconciler dispatches events to it.
"""

from .stack_handler import (
    ReconcileResult,
    StackHandler,
    StackHandlerFactory,
    StackServices,
)
from .stack_reconciler import StackReconciler

__all__ = [
    "ReconcileResult",
    "StackHandler",
    "StackHandlerFactory",
    "StackReconciler",
    "StackServices",
]
