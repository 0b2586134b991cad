"""Tests for CRD fulfillment checks and reference-counted CRD labels."""

import pytest

from stack_manager.errors import CRDFulfillmentError, TemporaryError
from stack_manager.models import SchemaDescriptor, Stack
from stack_manager.services.crd_labels import (
    CRDLabelCurator,
    label_patch,
    matched_crds,
    missing_crds,
    release_labels,
)
from stack_manager.utils.naming import multi_parent_label, namespace_label
from tests.utils.fake_kube import make_crd, make_stack

FOO = {"apiVersion": "example.org/v1", "kind": "Foo"}
CRD_NAME = "foos.example.org"


def stack(name: str = "demo", namespace: str = "tenant", crds=(FOO,)) -> Stack:
    return Stack.from_k8s(
        make_stack(name, namespace, spec={"customresourcedefinitions": list(crds)})
    )


async def install(curator: CRDLabelCurator, target: Stack) -> None:
    crds = await curator.matched(target)
    curator.check_fulfilled(target, crds)
    await curator.add_namespace_labels(target, crds)
    await curator.add_multi_parent_labels(target, crds)


@pytest.fixture
def curator(tenant, metrics) -> CRDLabelCurator:
    return CRDLabelCurator(tenant.apis(), conflict_retries=2, metrics=metrics)


def labels_of(cluster, name: str = CRD_NAME) -> dict[str, str]:
    return cluster.crds[name].metadata.labels


class TestMatching:
    def test_matches_group_kind_and_version(self):
        crds = [make_crd("example.org", "Foo", versions=("v1", "v2"))]
        descriptors = [SchemaDescriptor(apiVersion="example.org/v2", kind="Foo")]

        assert matched_crds(descriptors, crds) == crds

    def test_each_crd_listed_once(self):
        crds = [make_crd("example.org", "Foo", versions=("v1", "v2"))]
        descriptors = [
            SchemaDescriptor(apiVersion="example.org/v1", kind="Foo"),
            SchemaDescriptor(apiVersion="example.org/v2", kind="Foo"),
        ]

        assert len(matched_crds(descriptors, crds)) == 1

    def test_missing_version(self):
        crds = [make_crd("example.org", "Foo", versions=("v2",))]
        descriptors = [SchemaDescriptor(**FOO)]

        assert missing_crds(descriptors, crds) == [("example.org", "Foo", "v1")]


class TestFulfillment:
    @pytest.mark.asyncio
    async def test_missing_crd_is_reported(self, curator):
        target = stack()
        crds = await curator.matched(target)

        with pytest.raises(CRDFulfillmentError) as exc_info:
            curator.check_fulfilled(target, crds)

        assert exc_info.value.args[0] == "missing CRDs: example.org/Foo/v1"

    @pytest.mark.asyncio
    async def test_fulfilled(self, tenant, curator):
        tenant.add_crd(make_crd("example.org", "Foo"))
        target = stack()

        curator.check_fulfilled(target, await curator.matched(target))

    @pytest.mark.asyncio
    async def test_stack_without_crds_lists_nothing(self, tenant, curator):
        assert await curator.matched(stack(crds=())) == []
        assert tenant.called("list_custom_resource_definition") == []


class TestReferenceCounting:
    @pytest.mark.asyncio
    async def test_install_adds_both_labels(self, tenant, curator, metrics):
        tenant.add_crd(make_crd("example.org", "Foo"))

        await install(curator, stack("a"))

        labels = labels_of(tenant)
        assert labels[namespace_label("tenant")] == "true"
        assert labels[multi_parent_label("a", "tenant")] == "true"
        metrics.record_crd_label_patch.assert_called_with("add")

    @pytest.mark.asyncio
    async def test_namespace_label_survives_until_last_install(self, tenant, curator):
        tenant.add_crd(make_crd("example.org", "Foo"))
        await install(curator, stack("a"))
        await install(curator, stack("b"))

        await curator.remove_labels(stack("a"))

        labels = labels_of(tenant)
        assert multi_parent_label("a", "tenant") not in labels
        assert labels[multi_parent_label("b", "tenant")] == "true"
        assert labels[namespace_label("tenant")] == "true"

        await curator.remove_labels(stack("b"))

        labels = labels_of(tenant)
        assert multi_parent_label("b", "tenant") not in labels
        assert namespace_label("tenant") not in labels

    @pytest.mark.asyncio
    async def test_other_namespace_keeps_its_labels(self, tenant, curator):
        tenant.add_crd(make_crd("example.org", "Foo"))
        await install(curator, stack("a", "team-a"))
        await install(curator, stack("a", "team-b"))

        await curator.remove_labels(stack("a", "team-a"))

        labels = labels_of(tenant)
        assert namespace_label("team-a") not in labels
        assert labels[namespace_label("team-b")] == "true"
        assert labels[multi_parent_label("a", "team-b")] == "true"

    @pytest.mark.asyncio
    async def test_dashed_names_keep_separate_references(self, tenant, curator):
        tenant.add_crd(make_crd("example.org", "Foo"))
        await install(curator, stack("b-x", "a"))
        await install(curator, stack("x", "a-b"))

        await curator.remove_labels(stack("b-x", "a"))

        labels = labels_of(tenant)
        assert labels[multi_parent_label("x", "a-b")] == "true"
        assert labels[namespace_label("a-b")] == "true"
        assert namespace_label("a") not in labels

    @pytest.mark.asyncio
    async def test_dashed_namespace_does_not_pin_label(self, tenant, curator):
        tenant.add_crd(make_crd("example.org", "Foo"))
        await install(curator, stack("x", "a"))
        await install(curator, stack("y", "a-b"))

        await curator.remove_labels(stack("x", "a"))

        labels = labels_of(tenant)
        assert namespace_label("a") not in labels
        assert labels[namespace_label("a-b")] == "true"
        assert labels[multi_parent_label("y", "a-b")] == "true"

    @pytest.mark.asyncio
    async def test_install_is_idempotent(self, tenant, curator):
        tenant.add_crd(make_crd("example.org", "Foo"))
        await install(curator, stack("a"))
        patches = len(tenant.called("patch_custom_resource_definition"))

        await install(curator, stack("a"))

        assert len(tenant.called("patch_custom_resource_definition")) == patches

    @pytest.mark.asyncio
    async def test_unowned_crds_are_never_labeled(self, tenant, curator):
        tenant.add_crd(make_crd("example.org", "Foo", owned=False))

        await install(curator, stack("a"))
        await curator.remove_labels(stack("a"))

        assert tenant.called("patch_custom_resource_definition") == []

    @pytest.mark.asyncio
    async def test_remove_without_matching_crds(self, tenant, curator):
        await curator.remove_labels(stack("a"))
        assert tenant.called("patch_custom_resource_definition") == []


class TestConflicts:
    @pytest.mark.asyncio
    async def test_conflict_rereads_and_keeps_concurrent_label(
        self, tenant, curator, metrics
    ):
        tenant.add_crd(make_crd("example.org", "Foo"))
        target = stack("a")
        crds = await curator.matched(target)
        other_label = multi_parent_label("b", "tenant")

        def concurrent_install(name):
            tenant.update_crd_labels(name, {**labels_of(tenant, name), other_label: "true"})

        tenant.on_next_crd_patch(concurrent_install)
        await curator.add_multi_parent_labels(target, crds)

        labels = labels_of(tenant)
        assert labels[other_label] == "true"
        assert labels[multi_parent_label("a", "tenant")] == "true"
        metrics.record_crd_label_conflict.assert_called_once()
        assert len(tenant.called("read_custom_resource_definition")) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self, tenant, curator):
        tenant.add_crd(make_crd("example.org", "Foo"))
        target = stack("a")
        crds = await curator.matched(target)

        def bump(name):
            tenant.update_crd_labels(name, dict(labels_of(tenant, name)))

        for _ in range(3):
            tenant.on_next_crd_patch(bump)

        with pytest.raises(TemporaryError):
            await curator.add_namespace_labels(target, crds)

        assert len(tenant.called("patch_custom_resource_definition")) == 3

    @pytest.mark.asyncio
    async def test_crd_deleted_while_patching(self, tenant, curator):
        tenant.add_crd(make_crd("example.org", "Foo"))
        target = stack("a")
        crds = await curator.matched(target)

        tenant.on_next_crd_patch(lambda name: tenant.crds.pop(name))
        await curator.add_namespace_labels(target, crds)

        assert CRD_NAME not in tenant.crds

    @pytest.mark.asyncio
    async def test_namespace_then_parent_label_use_fresh_version(self, tenant, curator):
        tenant.add_crd(make_crd("example.org", "Foo"))

        await install(curator, stack("a"))

        assert tenant.called("read_custom_resource_definition") == []


class TestPureHelpers:
    def test_label_patch_removes_with_null(self):
        patch = label_patch({"a": "1", "b": "2"}, {"a": "1"}, "7")

        assert patch == {"metadata": {"labels": {"b": None}, "resourceVersion": "7"}}

    def test_release_labels_ignores_unrelated_crd(self):
        mutate = release_labels("a", "tenant")
        owned = {"app.kubernetes.io/managed-by": "stack-manager"}

        assert mutate(owned) is None
