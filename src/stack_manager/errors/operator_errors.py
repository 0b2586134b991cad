"""
Operator error hierarchy with categorization and retry logic.

This module defines the error types used throughout the Stack manager,
providing clear categorization and integration with kopf's retry mechanisms.
"""

import kopf


class OperatorError(Exception):
    """
    Base error class for all operator-related exceptions.

    Provides categorization, retry behavior, and user guidance for resolution.
    """

    def __init__(
        self,
        message: str,
        category: str,
        retryable: bool = True,
        delay: int = 30,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize operator error.

        Args:
            message: Human-readable error description
            category: Error category (validation, api, configuration, external)
            retryable: Whether kopf should retry this operation
            delay: Suggested retry delay in seconds
            user_action: What user should do to resolve the issue
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.delay = delay
        self.user_action = user_action
        self.cause = cause

    def as_kopf_error(self):
        """Convert to appropriate kopf exception type."""
        if self.retryable:
            return kopf.TemporaryError(str(self), delay=self.delay)
        else:
            return kopf.PermanentError(str(self))

    def __str__(self) -> str:
        """Enhanced string representation with user guidance."""
        base_msg = super().__str__()
        if self.user_action:
            return f"{base_msg}\nAction required: {self.user_action}"
        return base_msg


class TemporaryError(OperatorError):
    """Temporary error that should be retried."""

    def __init__(self, message: str, delay: int = 30, user_action: str | None = None):
        super().__init__(
            message=message,
            category="temporary",
            retryable=True,
            delay=delay,
            user_action=user_action
            or "Wait for automatic retry or check system status",
        )


class ExternalServiceError(OperatorError):
    """Error communicating with external services."""

    def __init__(
        self,
        service: str,
        message: str,
        retryable: bool = True,
        delay: int = 60,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        action = user_action or f"Check {service} connectivity and credentials"
        super().__init__(
            message=f"{service} error: {message}",
            category="external",
            retryable=retryable,
            delay=delay,
            user_action=action,
            cause=cause,
        )


class KubernetesAPIError(ExternalServiceError):
    """Error communicating with Kubernetes API."""

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        retryable: bool = True,
        cause: Exception | None = None,
    ):
        if reason:
            message = f"{message} (reason: {reason})"

        # Some K8s errors are not retryable
        non_retryable_reasons = {"Forbidden", "Unauthorized", "Invalid"}
        if reason in non_retryable_reasons:
            retryable = False

        super().__init__(
            service="Kubernetes API",
            message=message,
            retryable=retryable,
            user_action="Check RBAC permissions and cluster connectivity",
            cause=cause,
        )


class ReconciliationError(OperatorError):
    """Error raised when reconciliation cannot be completed."""

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        delay: int = 60,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(
            message=message,
            category="reconciliation",
            retryable=retryable,
            delay=delay,
            user_action=user_action
            or "Inspect operator logs and resource specification for issues",
            cause=cause,
        )


class ConfigurationError(OperatorError):
    """Error in operator or resource configuration."""

    def __init__(
        self, message: str, retryable: bool = False, user_action: str | None = None
    ):
        super().__init__(
            message=message,
            category="configuration",
            retryable=retryable,
            user_action=user_action or "Review and correct configuration",
        )


class PermissionScopeError(ConfigurationError):
    """Stack declares a permission scope the operator does not know."""

    def __init__(self, scope: str):
        self.scope = scope
        super().__init__(
            message=f"unknown permission scope for stack: {scope!r}",
            user_action="Set spec.permissionScope to Namespaced or Cluster",
        )


class HostAwareModeNotEnabledError(ConfigurationError):
    """A host-aware rewrite was requested while running in single cluster mode."""

    def __init__(self):
        super().__init__(
            message="host aware mode is not enabled",
            user_action="Set HOST_CONTROLLER_NAMESPACE to enable host-aware mode",
        )


class CRDFulfillmentError(ReconciliationError):
    """Stack references CustomResourceDefinitions that are not installed."""

    def __init__(self, missing: list[tuple[str, str, str]]):
        self.missing = list(missing)
        listed = ", ".join(
            f"{group}/{kind}/{version}" for group, kind, version in self.missing
        )
        super().__init__(
            message=f"missing CRDs: {listed}",
            user_action="Install the CustomResourceDefinitions shipped with the Stack",
        )


class ServiceAccountNotFoundError(TemporaryError):
    """The Stack's ServiceAccount does not exist in the tenant cluster."""

    def __init__(self, name: str, namespace: str):
        self.name = name
        self.namespace = namespace
        super().__init__(f"service account {namespace}/{name} is not found")


class ServiceAccountTokenNotReadyError(TemporaryError):
    """The ServiceAccount has no token secret reference yet."""

    def __init__(self, name: str, namespace: str):
        self.name = name
        self.namespace = namespace
        super().__init__(
            f"service account token secret is not generated yet for {namespace}/{name}"
        )


class ReconcileTimeoutError(TemporaryError):
    """A reconciliation exceeded its wall-clock deadline."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"reconcile deadline of {timeout}s exceeded")


class ReconcileInProgressError(TemporaryError):
    """Another reconciliation of the same Stack is still running."""

    def __init__(self, name: str, namespace: str):
        super().__init__(f"stack {namespace}/{name} is already being reconciled")


class StepError(ReconciliationError):
    """An install or teardown step failed; wraps the underlying error."""

    def __init__(self, step: str, cause: Exception):
        self.step = step
        detail = (
            cause.args[0] if isinstance(cause, OperatorError) and cause.args else str(cause)
        )
        super().__init__(
            message=f"{step}: {detail}",
            retryable=getattr(cause, "retryable", True),
            delay=getattr(cause, "delay", 60),
            user_action=getattr(cause, "user_action", None),
            cause=cause,
        )
