"""Centralized operator settings using pydantic-settings.

This module provides a single source of truth for all operator configuration
loaded from environment variables. Uses pydantic for automatic validation,
type coercion, and documentation.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from stack_manager.constants import (
    DEFAULT_CRD_LABEL_CONFLICT_RETRIES,
    DEFAULT_RECONCILE_TIMEOUT,
    DEFAULT_REQUEUE_AFTER_SUCCESS,
    DEFAULT_RETRY_DELAY,
)


class Settings(BaseSettings):
    """Operator configuration loaded from environment variables.

    All settings have sensible defaults for a single-cluster install. Setting
    HOST_CONTROLLER_NAMESPACE switches the operator into host-aware mode.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Operator identification
    operator_namespace: str = Field(
        default="stack-system",
        description="Namespace where the operator is deployed",
        validation_alias="OPERATOR_NAMESPACE",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )
    log_health_probes: bool = Field(
        default=False,
        validation_alias="LOG_HEALTH_PROBES",
        description="Log kopf health probe executions",
    )

    # Namespace watching
    namespaces: str = Field(
        default="",
        validation_alias="STACK_MANAGER_NAMESPACES",
        description="Comma-separated list of namespaces to watch (empty = all namespaces)",
    )

    # Metrics and observability
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port for Prometheus metrics endpoint",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Host address to bind metrics server",
    )

    # Host-aware topology
    host_controller_namespace: str = Field(
        default="",
        validation_alias="HOST_CONTROLLER_NAMESPACE",
        description="Namespace in the host cluster for Stack controllers (empty = single cluster)",
    )
    tenant_api_url: str = Field(
        default="",
        validation_alias="TENANT_API_URL",
        description="Tenant API server URL as reachable from host cluster pods",
    )
    host_kubeconfig: str = Field(
        default="",
        validation_alias="HOST_KUBECONFIG",
        description="Kubeconfig file for the host cluster (empty = in-cluster config)",
    )

    # Reconciliation behavior
    reconcile_timeout_seconds: int = Field(
        default=DEFAULT_RECONCILE_TIMEOUT,
        gt=0,
        validation_alias="RECONCILE_TIMEOUT_SECONDS",
        description="Wall-clock deadline for a single Stack reconciliation",
    )
    retry_delay_seconds: int = Field(
        default=DEFAULT_RETRY_DELAY,
        gt=0,
        validation_alias="RETRY_DELAY_SECONDS",
        description="Delay before retrying a failed reconciliation",
    )
    requeue_after_success_seconds: int = Field(
        default=DEFAULT_REQUEUE_AFTER_SUCCESS,
        gt=0,
        validation_alias="REQUEUE_AFTER_SUCCESS_SECONDS",
        description="Delay before re-checking a successfully reconciled Stack",
    )
    crd_label_conflict_retries: int = Field(
        default=DEFAULT_CRD_LABEL_CONFLICT_RETRIES,
        ge=0,
        validation_alias="CRD_LABEL_CONFLICT_RETRIES",
        description="Re-read attempts when a CRD label patch hits a conflict",
    )

    @model_validator(mode="after")
    def _check_requeue_order(self) -> "Settings":
        if self.retry_delay_seconds >= self.requeue_after_success_seconds:
            raise ValueError(
                "RETRY_DELAY_SECONDS must be shorter than REQUEUE_AFTER_SUCCESS_SECONDS"
            )
        return self

    @property
    def watched_namespaces(self) -> list[str] | None:
        """Parse watched namespaces from comma-separated string.

        Returns:
            List of namespace names, or None to watch all namespaces
        """
        if self.namespaces:
            return [ns.strip() for ns in self.namespaces.split(",") if ns.strip()]
        return None

    @property
    def host_aware(self) -> bool:
        return bool(self.host_controller_namespace)


# Global settings instance - initialized once at module import
settings = Settings()
