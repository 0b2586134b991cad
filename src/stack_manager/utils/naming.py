"""
Label and name policy for objects created on behalf of a Stack.

Everything here is a pure function of the Stack identity so that creation
and teardown always agree on names and selectors.
"""

import hashlib

from stack_manager.constants import (
    AGGREGATION_LABEL_FORMAT,
    CONTROLLER_NAME_SUFFIX,
    LABEL_VALUE_MAX_LENGTH,
    MULTI_PARENT_LABEL_PREFIX,
    MULTI_PARENT_NAMESPACE_MAX_LENGTH,
    NAMESPACE_LABEL_PREFIX,
    PARENT_GROUP_LABEL,
    PARENT_KIND_LABEL,
    PARENT_NAME_LABEL,
    PARENT_NAMESPACE_LABEL,
    PARENT_VERSION_LABEL,
    STACK_GROUP,
    STACK_KIND,
    STACK_VERSION,
    SYSTEM_ROLE_SUFFIX,
    TRUNCATE_HASH_LENGTH,
)


def truncate(
    value: str,
    length: int = LABEL_VALUE_MAX_LENGTH,
    suffix_length: int = TRUNCATE_HASH_LENGTH,
) -> str:
    """
    Shorten a value to at most ``length`` characters, keeping it unique.

    Values that already fit are returned unchanged. Longer values keep their
    prefix and end with ``-`` plus the first ``suffix_length`` hex characters
    of the SHA-256 of the full value.

    Raises:
        ValueError: If ``length`` cannot hold the separator and hash suffix
    """
    if len(value) <= length:
        return value
    if length < suffix_length + 1:
        raise ValueError(
            f"cannot truncate to length {length} with hash suffix of {suffix_length}"
        )
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()
    return f"{value[: length - suffix_length - 1]}-{digest[:suffix_length]}"


def parent_labels(name: str, namespace: str) -> dict[str, str]:
    """Labels linking a created object back to the Stack that created it."""
    return {
        PARENT_GROUP_LABEL: STACK_GROUP,
        PARENT_VERSION_LABEL: STACK_VERSION,
        PARENT_KIND_LABEL: STACK_KIND,
        PARENT_NAMESPACE_LABEL: namespace,
        PARENT_NAME_LABEL: name,
    }


def namespace_label(namespace: str) -> str:
    return f"{NAMESPACE_LABEL_PREFIX}{namespace}"


def multi_parent_label_prefix(namespace: str) -> str:
    """
    Key prefix shared by every multi-parent label from one namespace.

    Namespaces never contain a dot, so the prefix ends at the first dot of
    the key and cannot match labels of another namespace. Long namespaces
    are truncated to leave room for at least a hashed Stack name.
    """
    namespace_part = truncate(namespace, MULTI_PARENT_NAMESPACE_MAX_LENGTH)
    return f"{MULTI_PARENT_LABEL_PREFIX}{namespace_part}."


def multi_parent_label(name: str, namespace: str) -> str:
    """Reference-count label ``<namespace>.<name>`` of one Stack install."""
    prefix = multi_parent_label_prefix(namespace)
    room = LABEL_VALUE_MAX_LENGTH - (len(prefix) - len(MULTI_PARENT_LABEL_PREFIX))
    return f"{prefix}{truncate(name, room)}"


def has_prefixed_label(labels: dict[str, str] | None, prefix: str) -> bool:
    return any(key.startswith(prefix) for key in labels or {})


def aggregation_label(scope: str, persona: str) -> str:
    return AGGREGATION_LABEL_FORMAT.format(scope=scope, persona=persona)


def persona_role_name(name: str, namespace: str, persona: str) -> str:
    return f"stack:{namespace}:{name}:{persona}"


def system_role_name(name: str, namespace: str) -> str:
    return persona_role_name(name, namespace, SYSTEM_ROLE_SUFFIX)


def cluster_role_binding_name(name: str, namespace: str) -> str:
    return f"stack:{namespace}:{name}"


def controller_workload_name(name: str) -> str:
    """Name of the Stack controller workload, always ending in ``-controller``."""
    base = truncate(name, LABEL_VALUE_MAX_LENGTH - len(CONTROLLER_NAME_SUFFIX))
    return f"{base}{CONTROLLER_NAME_SUFFIX}"


def label_selector(labels: dict[str, str]) -> str:
    """Render labels as an equality based selector string."""
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))
