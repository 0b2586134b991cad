"""
Error handling module for the Stack manager.

This module provides a comprehensive error hierarchy that integrates with kopf
and provides clear categorization for different types of failures.
"""

from .operator_errors import (
    ConfigurationError,
    CRDFulfillmentError,
    ExternalServiceError,
    HostAwareModeNotEnabledError,
    KubernetesAPIError,
    OperatorError,
    PermissionScopeError,
    ReconciliationError,
    ReconcileInProgressError,
    ReconcileTimeoutError,
    ServiceAccountNotFoundError,
    ServiceAccountTokenNotReadyError,
    StepError,
    TemporaryError,
)

__all__ = [
    "OperatorError",
    "TemporaryError",
    "ExternalServiceError",
    "KubernetesAPIError",
    "ConfigurationError",
    "ReconciliationError",
    "PermissionScopeError",
    "HostAwareModeNotEnabledError",
    "CRDFulfillmentError",
    "ServiceAccountNotFoundError",
    "ServiceAccountTokenNotReadyError",
    "ReconcileTimeoutError",
    "ReconcileInProgressError",
    "StepError",
]
