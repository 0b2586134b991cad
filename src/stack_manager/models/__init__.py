"""Pydantic models for Stack resources."""

from .stack import (
    Condition,
    ControllerSpec,
    ControllerWorkload,
    ObjectReference,
    PolicyRule,
    SchemaDescriptor,
    ServiceAccountOptions,
    Stack,
    StackMetadata,
    StackPermissions,
    StackSpec,
    StackStatus,
)

__all__ = [
    "Condition",
    "ControllerSpec",
    "ControllerWorkload",
    "ObjectReference",
    "PolicyRule",
    "SchemaDescriptor",
    "ServiceAccountOptions",
    "Stack",
    "StackMetadata",
    "StackPermissions",
    "StackSpec",
    "StackStatus",
]
