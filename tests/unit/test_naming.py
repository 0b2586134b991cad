"""Tests for the name and label policy of Stack-owned objects."""

import hashlib

import pytest

from stack_manager.constants import (
    MULTI_PARENT_LABEL_PREFIX,
    PARENT_NAME_LABEL,
    PARENT_NAMESPACE_LABEL,
    STACK_GROUP,
)
from stack_manager.utils.naming import (
    aggregation_label,
    cluster_role_binding_name,
    controller_workload_name,
    has_prefixed_label,
    label_selector,
    multi_parent_label,
    multi_parent_label_prefix,
    namespace_label,
    parent_labels,
    persona_role_name,
    system_role_name,
    truncate,
)


class TestTruncate:
    def test_short_value_is_unchanged(self):
        assert truncate("tenant.demo") == "tenant.demo"

    def test_value_at_limit_is_unchanged(self):
        value = "a" * 63
        assert truncate(value) == value

    def test_long_value_keeps_prefix_and_hash(self):
        value = "x" * 80
        digest = hashlib.sha256(value.encode()).hexdigest()[:5]

        result = truncate(value)

        assert len(result) == 63
        assert result == "x" * 57 + "-" + digest

    def test_distinct_long_values_stay_distinct(self):
        a = "tenant-" + "a" * 70
        b = "tenant-" + "a" * 69 + "b"
        assert truncate(a) != truncate(b)

    def test_custom_length(self):
        result = truncate("abcdefghijklmnop", length=10, suffix_length=3)
        assert len(result) == 10
        assert result.startswith("abcdef-")

    def test_length_too_short_for_suffix(self):
        with pytest.raises(ValueError):
            truncate("abcdefgh", length=4, suffix_length=5)


class TestParentLabels:
    def test_identify_stack(self):
        labels = parent_labels("demo", "tenant")

        assert labels[PARENT_NAME_LABEL] == "demo"
        assert labels[PARENT_NAMESPACE_LABEL] == "tenant"
        assert STACK_GROUP in labels.values()

    def test_returns_fresh_dict(self):
        first = parent_labels("demo", "tenant")
        first["extra"] = "x"
        assert "extra" not in parent_labels("demo", "tenant")


class TestSharedCRDLabels:
    def test_namespace_label(self):
        assert namespace_label("tenant") == "namespace.stacks.platform.io/tenant"

    def test_multi_parent_label_starts_with_namespace_prefix(self):
        label = multi_parent_label("demo", "tenant")

        assert label == f"{MULTI_PARENT_LABEL_PREFIX}tenant.demo"
        assert label.startswith(multi_parent_label_prefix("tenant"))

    def test_multi_parent_label_is_truncated(self):
        label = multi_parent_label("s" * 80, "tenant")
        assert len(label) == len(MULTI_PARENT_LABEL_PREFIX) + 63

    def test_dashes_do_not_make_labels_collide(self):
        assert multi_parent_label("b-x", "a") != multi_parent_label("x", "a-b")

    def test_prefix_does_not_match_longer_namespace(self):
        label = multi_parent_label("y", "a-b")
        assert not label.startswith(multi_parent_label_prefix("a"))

    def test_long_namespace_keeps_its_prefix(self):
        namespace = "n" * 63
        label = multi_parent_label("s" * 63, namespace)

        assert label.startswith(multi_parent_label_prefix(namespace))
        assert len(label) == len(MULTI_PARENT_LABEL_PREFIX) + 63
        assert label != multi_parent_label("s" * 62, namespace)

    def test_has_prefixed_label(self):
        labels = {multi_parent_label("demo", "tenant"): "true"}

        assert has_prefixed_label(labels, multi_parent_label_prefix("tenant"))
        assert not has_prefixed_label(labels, multi_parent_label_prefix("other"))
        assert not has_prefixed_label(None, multi_parent_label_prefix("tenant"))


class TestRoleNames:
    def test_persona_role_name(self):
        assert persona_role_name("demo", "tenant", "admin") == "stack:tenant:demo:admin"

    def test_system_role_name(self):
        assert system_role_name("demo", "tenant") == "stack:tenant:demo:system"

    def test_cluster_role_binding_name(self):
        assert cluster_role_binding_name("demo", "tenant") == "stack:tenant:demo"

    def test_aggregation_label(self):
        assert (
            aggregation_label("namespace", "view")
            == "rbac.stacks.platform.io/aggregate-to-namespace-view"
        )


class TestControllerWorkloadName:
    def test_suffix(self):
        assert controller_workload_name("demo") == "demo-controller"

    def test_long_name_fits_label_limit(self):
        name = controller_workload_name("d" * 70)

        assert len(name) == 63
        assert name.endswith("-controller")


def test_label_selector_is_sorted():
    assert label_selector({"b": "2", "a": "1"}) == "a=1,b=2"
