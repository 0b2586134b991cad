"""Tests for admin, edit and view ClusterRoles over Stack CRDs."""

import pytest

from stack_manager.constants import PARENT_NAME_LABEL
from stack_manager.models import Stack
from stack_manager.services.persona_roles import (
    DEFAULT_PERSONA_VERBS,
    PersonaRoleBuilder,
    crd_resources,
)
from stack_manager.utils.naming import aggregation_label, namespace_label
from tests.utils.fake_kube import make_crd, make_stack


def stack(scope: str = "") -> Stack:
    return Stack.from_k8s(make_stack(spec={"permissionScope": scope}))


class TestCRDResources:
    def test_plain_crd(self):
        assert crd_resources(make_crd("example.org", "Foo")) == ["foos"]

    def test_status_subresource(self):
        crd = make_crd("example.org", "Foo", status_subresource=True)
        assert crd_resources(crd) == ["foos", "foos/status"]

    def test_scale_subresource(self):
        crd = make_crd("example.org", "Foo", status_subresource=True, scale_subresource=True)
        assert crd_resources(crd) == ["foos", "foos/status", "foos/scale"]


class TestBuild:
    def test_admin_role_for_status_crd(self, tenant):
        crd = make_crd("example.org", "Foo", status_subresource=True)

        roles = PersonaRoleBuilder(tenant.apis()).build(stack(), [crd])
        admin = next(r for r in roles if r.metadata.name.endswith(":admin"))

        assert admin.metadata.name == "stack:tenant:demo:admin"
        assert len(admin.rules) == 1
        assert admin.rules[0].api_groups == ["example.org"]
        assert admin.rules[0].resources == ["foos", "foos/status"]
        assert admin.rules[0].verbs == list(DEFAULT_PERSONA_VERBS["admin"])

    def test_view_role_is_read_only(self, tenant):
        roles = PersonaRoleBuilder(tenant.apis()).build(
            stack(), [make_crd("example.org", "Foo")]
        )
        view = next(r for r in roles if r.metadata.name.endswith(":view"))

        assert view.rules[0].verbs == ["get", "list", "watch"]

    def test_one_role_per_persona(self, tenant):
        roles = PersonaRoleBuilder(tenant.apis()).build(stack(), [])

        assert [r.metadata.name.rsplit(":", 1)[1] for r in roles] == [
            "admin",
            "edit",
            "view",
        ]
        assert all(r.rules == [] for r in roles)

    def test_namespaced_labels(self, tenant):
        roles = PersonaRoleBuilder(tenant.apis()).build(stack("Namespaced"), [])
        labels = roles[0].metadata.labels

        assert labels[namespace_label("tenant")] == "true"
        assert labels[aggregation_label("namespace", "admin")] == "true"
        assert labels[PARENT_NAME_LABEL] == "demo"

    def test_cluster_scope_aggregates_to_environment(self, tenant):
        roles = PersonaRoleBuilder(tenant.apis()).build(stack("Cluster"), [])
        labels = roles[2].metadata.labels

        assert labels[aggregation_label("environment", "view")] == "true"
        assert namespace_label("tenant") not in labels

    def test_custom_verb_table(self, tenant):
        builder = PersonaRoleBuilder(tenant.apis(), verbs={"auditor": ("get",)})

        roles = builder.build(stack(), [make_crd("example.org", "Foo")])

        assert [r.metadata.name for r in roles] == ["stack:tenant:demo:auditor"]


class TestCreate:
    @pytest.mark.asyncio
    async def test_creates_roles(self, tenant):
        await PersonaRoleBuilder(tenant.apis()).create(
            stack(), [make_crd("example.org", "Foo")]
        )

        assert set(tenant.cluster_roles) == {
            "stack:tenant:demo:admin",
            "stack:tenant:demo:edit",
            "stack:tenant:demo:view",
        }

    @pytest.mark.asyncio
    async def test_existing_roles_are_not_updated(self, tenant):
        builder = PersonaRoleBuilder(tenant.apis())
        await builder.create(stack(), [make_crd("example.org", "Foo")])

        await builder.create(
            stack(), [make_crd("example.org", "Foo"), make_crd("example.org", "Bar")]
        )

        admin = tenant.cluster_roles["stack:tenant:demo:admin"]
        assert len(admin.rules) == 1
