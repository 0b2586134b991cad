"""
Pydantic models for the Stack custom resource.

Stacks are read into frozen snapshots. Every change produces a new snapshot
through ``model_copy`` so a reconciliation never mutates the object it was
handed.
"""

from datetime import UTC, datetime
from typing import Any

from kubernetes import client
from pydantic import BaseModel, Field, model_validator

from stack_manager.constants import (
    CONDITION_FALSE,
    CONDITION_READY,
    CONDITION_SYNCED,
    CONDITION_TRUE,
    REASON_AVAILABLE,
    REASON_CREATING,
    REASON_DELETING,
    REASON_RECONCILE_ERROR,
    REASON_RECONCILE_SUCCESS,
    STACK_API_VERSION,
    STACK_KIND,
)
from stack_manager.errors import OperatorError

_FROZEN = {"populate_by_name": True, "frozen": True}


class SchemaDescriptor(BaseModel):
    """A CustomResourceDefinition the Stack ships, by apiVersion and kind."""

    model_config = _FROZEN

    api_version: str = Field(..., alias="apiVersion", description="group/version")
    kind: str = Field(..., description="Kind of the custom resource")

    @property
    def group(self) -> str:
        group, _, _ = self.api_version.rpartition("/")
        return group

    @property
    def version(self) -> str:
        return self.api_version.rpartition("/")[2]

    def triple(self) -> tuple[str, str, str]:
        return (self.group, self.kind, self.version)


class PolicyRule(BaseModel):
    """RBAC policy rule requested by a Stack."""

    model_config = _FROZEN

    api_groups: list[str] = Field(default_factory=list, alias="apiGroups")
    resources: list[str] = Field(default_factory=list)
    verbs: list[str] = Field(default_factory=list)
    resource_names: list[str] | None = Field(None, alias="resourceNames")
    non_resource_urls: list[str] | None = Field(None, alias="nonResourceURLs")

    def to_k8s(self) -> client.V1PolicyRule:
        return client.V1PolicyRule(
            api_groups=list(self.api_groups),
            resources=list(self.resources),
            verbs=list(self.verbs),
            resource_names=self.resource_names,
            non_resource_ur_ls=self.non_resource_urls,
        )


class StackPermissions(BaseModel):
    model_config = _FROZEN

    rules: list[PolicyRule] = Field(default_factory=list)


class ControllerWorkload(BaseModel):
    """Template for the Stack's own controller (Deployment or Job)."""

    model_config = _FROZEN

    name: str | None = Field(None, description="Name from the Stack package")
    spec: dict[str, Any] = Field(
        default_factory=dict, description="DeploymentSpec or JobSpec body"
    )


class ServiceAccountOptions(BaseModel):
    model_config = _FROZEN

    annotations: dict[str, str] = Field(default_factory=dict)


class ControllerSpec(BaseModel):
    """How the Stack's controller is run. Deployment and Job are exclusive."""

    model_config = _FROZEN

    deployment: ControllerWorkload | None = None
    job: ControllerWorkload | None = None
    service_account: ServiceAccountOptions | None = Field(
        None, alias="serviceAccount"
    )

    @model_validator(mode="after")
    def _single_workload(self) -> "ControllerSpec":
        if self.deployment is not None and self.job is not None:
            raise ValueError("controller.deployment and controller.job are exclusive")
        return self


class StackSpec(BaseModel):
    model_config = _FROZEN

    customresourcedefinitions: list[SchemaDescriptor] = Field(default_factory=list)
    permission_scope: str = Field("", alias="permissionScope")
    permissions: StackPermissions = Field(default_factory=StackPermissions)
    controller: ControllerSpec = Field(default_factory=ControllerSpec)


class ObjectReference(BaseModel):
    """Reference to a Kubernetes object, used for controllerRef."""

    model_config = _FROZEN

    api_version: str | None = Field(None, alias="apiVersion")
    kind: str | None = None
    name: str
    namespace: str | None = None
    uid: str | None = None


class Condition(BaseModel):
    model_config = _FROZEN

    type: str
    status: str
    reason: str
    message: str = ""
    last_transition_time: str = Field(
        default_factory=lambda: datetime.now(UTC).isoformat(),
        alias="lastTransitionTime",
    )

    @classmethod
    def creating(cls) -> "Condition":
        return cls(type=CONDITION_READY, status=CONDITION_FALSE, reason=REASON_CREATING)

    @classmethod
    def deleting(cls) -> "Condition":
        return cls(type=CONDITION_READY, status=CONDITION_FALSE, reason=REASON_DELETING)

    @classmethod
    def available(cls) -> "Condition":
        return cls(type=CONDITION_READY, status=CONDITION_TRUE, reason=REASON_AVAILABLE)

    @classmethod
    def reconcile_success(cls) -> "Condition":
        return cls(
            type=CONDITION_SYNCED,
            status=CONDITION_TRUE,
            reason=REASON_RECONCILE_SUCCESS,
        )

    @classmethod
    def reconcile_error(cls, error: BaseException) -> "Condition":
        # OperatorError.__str__ appends user guidance; keep only the detail
        if isinstance(error, OperatorError) and error.args:
            message = str(error.args[0])
        else:
            message = str(error)
        return cls(
            type=CONDITION_SYNCED,
            status=CONDITION_FALSE,
            reason=REASON_RECONCILE_ERROR,
            message=message,
        )

    def equivalent(self, other: "Condition") -> bool:
        """Same condition ignoring the transition timestamp."""
        return (self.type, self.status, self.reason, self.message) == (
            other.type,
            other.status,
            other.reason,
            other.message,
        )


class StackStatus(BaseModel):
    model_config = _FROZEN

    controller_ref: ObjectReference | None = Field(None, alias="controllerRef")
    conditions: list[Condition] = Field(default_factory=list)

    def condition(self, condition_type: str) -> Condition | None:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def with_conditions(self, *conditions: Condition) -> "StackStatus":
        """Return a status with the given conditions replacing those of the same type.

        An unchanged condition keeps its original lastTransitionTime.
        """
        merged = list(self.conditions)
        for new in conditions:
            for index, existing in enumerate(merged):
                if existing.type == new.type:
                    if not existing.equivalent(new):
                        merged[index] = new
                    break
            else:
                merged.append(new)
        return self.model_copy(update={"conditions": merged})

    def to_k8s(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class StackMetadata(BaseModel):
    model_config = {**_FROZEN, "extra": "ignore"}

    name: str
    namespace: str = ""
    uid: str = ""
    resource_version: str | None = Field(None, alias="resourceVersion")
    generation: int | None = None
    deletion_timestamp: str | None = Field(None, alias="deletionTimestamp")
    finalizers: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)


class Stack(BaseModel):
    """Snapshot of a Stack object as read from the API server."""

    model_config = {**_FROZEN, "extra": "ignore"}

    api_version: str = Field(STACK_API_VERSION, alias="apiVersion")
    kind: str = STACK_KIND
    metadata: StackMetadata
    spec: StackSpec = Field(default_factory=StackSpec)
    status: StackStatus = Field(default_factory=StackStatus)

    @classmethod
    def from_k8s(cls, body: Any) -> "Stack":
        """Build a snapshot from a raw API dict or kopf body."""
        return cls.model_validate(
            {
                "apiVersion": body.get("apiVersion", STACK_API_VERSION),
                "kind": body.get("kind", STACK_KIND),
                "metadata": dict(body.get("metadata") or {}),
                "spec": dict(body.get("spec") or {}),
                "status": dict(body.get("status") or {}),
            }
        )

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    @property
    def has_controller_ref(self) -> bool:
        return self.status.controller_ref is not None

    def owner_reference(self) -> client.V1OwnerReference:
        return client.V1OwnerReference(
            api_version=self.api_version,
            kind=self.kind,
            name=self.name,
            uid=self.metadata.uid,
            controller=True,
            block_owner_deletion=True,
        )

    def with_status(self, status: StackStatus) -> "Stack":
        return self.model_copy(update={"status": status})

    def with_conditions(self, *conditions: Condition) -> "Stack":
        return self.with_status(self.status.with_conditions(*conditions))

    def with_controller_ref(self, ref: ObjectReference) -> "Stack":
        return self.with_status(
            self.status.model_copy(update={"controller_ref": ref})
        )
