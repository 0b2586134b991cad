"""
Constants used throughout the Stack manager.

This module defines all constant values used by the operator including:
- Stack CRD coordinates and the teardown finalizer
- Label keys that form the contract with shared CRDs and roles
- Host-aware rewrite names (volumes, mounts, environment variables)
- Condition types and reasons
"""

# Stack custom resource coordinates
STACK_GROUP = "stacks.platform.io"
STACK_VERSION = "v1alpha1"
STACK_KIND = "Stack"
STACK_PLURAL = "stacks"
STACK_API_VERSION = f"{STACK_GROUP}/{STACK_VERSION}"
STACK_CRD_NAME = f"{STACK_PLURAL}.{STACK_GROUP}"

# Finalizer guarding teardown of everything a Stack installed
STACK_FINALIZER = "finalizer.stacks.platform.io"

# Ownership marker placed on CRDs installed by the package manager
MANAGED_BY_LABEL_KEY = "app.kubernetes.io/managed-by"
MANAGED_BY_LABEL_VALUE = "stack-manager"

# Shared CRD labels
NAMESPACE_LABEL_PREFIX = "namespace.stacks.platform.io/"
MULTI_PARENT_LABEL_PREFIX = "parent.stacks.platform.io/"
LABEL_VALUE_TRUE = "true"

# Parent labels stamped on objects created for a Stack
PARENT_GROUP_LABEL = "core.stacks.platform.io/parent-group"
PARENT_VERSION_LABEL = "core.stacks.platform.io/parent-version"
PARENT_KIND_LABEL = "core.stacks.platform.io/parent-kind"
PARENT_NAMESPACE_LABEL = "core.stacks.platform.io/parent-namespace"
PARENT_NAME_LABEL = "core.stacks.platform.io/parent-name"

# Persona role labels
SCOPE_NAMESPACE = "namespace"
SCOPE_ENVIRONMENT = "environment"
AGGREGATION_LABEL_FORMAT = "rbac.stacks.platform.io/aggregate-to-{scope}-{persona}"

# Back-reference annotations on objects relocated into the host cluster
HOST_NAME_ANNOTATION_FORMAT = "tenant.stacks.platform.io/{kind}-name"
HOST_NAMESPACE_ANNOTATION_FORMAT = "tenant.stacks.platform.io/{kind}-namespace"

# Permission scopes
PERMISSION_SCOPE_NAMESPACED = "Namespaced"
PERMISSION_SCOPE_CLUSTER = "Cluster"

# Kubernetes name limits
LABEL_VALUE_MAX_LENGTH = 63
TRUNCATE_HASH_LENGTH = 5
# Namespace part of a multi-parent label key, leaving room for "." and a hashed name
MULTI_PARENT_NAMESPACE_MAX_LENGTH = LABEL_VALUE_MAX_LENGTH - TRUNCATE_HASH_LENGTH - 2

# Controller workload
CONTROLLER_NAME_SUFFIX = "-controller"
CONTROLLER_SELECTOR_LABEL = "app"
SYSTEM_ROLE_SUFFIX = "system"

# Host-aware pod rewrite
SA_TOKEN_VOLUME_NAME = "sa-token"
SA_TOKEN_MOUNT_PATH = "/var/run/secrets/kubernetes.io/serviceaccount"
ENV_KUBERNETES_SERVICE_HOST = "KUBERNETES_SERVICE_HOST"
ENV_KUBERNETES_SERVICE_PORT = "KUBERNETES_SERVICE_PORT"
ENV_POD_NAMESPACE = "POD_NAMESPACE"

# Condition types (following the crossplane-style Ready/Synced pair)
CONDITION_READY = "Ready"
CONDITION_SYNCED = "Synced"

# Condition reasons
REASON_CREATING = "Creating"
REASON_DELETING = "Deleting"
REASON_AVAILABLE = "Available"
REASON_RECONCILE_SUCCESS = "ReconcileSuccess"
REASON_RECONCILE_ERROR = "ReconcileError"

# Condition status constants
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"

# Phase values exported through metrics
PHASE_CREATING = "Creating"
PHASE_AVAILABLE = "Available"
PHASE_DELETING = "Deleting"
PHASE_FAILED = "Failed"

# Timing defaults (seconds)
DEFAULT_RECONCILE_TIMEOUT = 60
DEFAULT_RETRY_DELAY = 5
DEFAULT_REQUEUE_AFTER_SUCCESS = 10
DEFAULT_CRD_LABEL_CONFLICT_RETRIES = 5
