"""
Create, update and delete pipelines for a single Stack.

A handler is built per reconciliation around one Stack snapshot. Steps run
in a fixed order and stop at the first failure, which is raised as a
StepError naming the step. The handler keeps the latest snapshot in
``stack`` so the caller can report the failure on it.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Protocol

from stack_manager.errors import StepError
from stack_manager.models import Condition, Stack
from stack_manager.observability.logging import OperatorLogger
from stack_manager.services.crd_labels import CRDLabelCurator
from stack_manager.services.persona_roles import PersonaRoleBuilder
from stack_manager.services.rbac_provisioner import RBACProvisioner
from stack_manager.services.secret_sync import SecretSyncer
from stack_manager.services.stack_store import StackStore
from stack_manager.services.workload import (
    WorkloadPreparer,
    owner_reference_to,
    reference_to,
)
from stack_manager.utils.hosted import HostAwareConfig
from stack_manager.utils.kubernetes import KubeApis, delete_all_of
from stack_manager.utils.naming import parent_labels

logger = OperatorLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconciliation and when to look at the Stack again."""

    requeue_after: float | None = None
    error: Exception | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class LifecycleHandler(Protocol):
    stack: Stack

    async def sync(self) -> ReconcileResult: ...

    async def create(self) -> ReconcileResult: ...

    async def update(self) -> ReconcileResult: ...

    async def delete(self) -> ReconcileResult: ...


@dataclass(frozen=True)
class StackServices:
    """Everything a StackHandler talks to, shared across reconciliations."""

    kube: KubeApis
    host_kube: KubeApis
    store: StackStore
    rbac: RBACProvisioner
    crd_labels: CRDLabelCurator
    persona_roles: PersonaRoleBuilder
    workload: WorkloadPreparer
    secret_sync: SecretSyncer
    host_aware: HostAwareConfig | None = None
    requeue_after_success: float = 10

    @classmethod
    def build(
        cls,
        kube: KubeApis,
        host_kube: KubeApis | None = None,
        host_aware: HostAwareConfig | None = None,
        requeue_after_success: float = 10,
        crd_label_conflict_retries: int = 5,
    ) -> "StackServices":
        """
        Wire the services for one tenant cluster and an optional host cluster.

        Without a separate host cluster every workload goes to ``kube``.
        """
        host_kube = host_kube or kube
        return cls(
            kube=kube,
            host_kube=host_kube,
            store=StackStore(kube),
            rbac=RBACProvisioner(kube),
            crd_labels=CRDLabelCurator(kube, conflict_retries=crd_label_conflict_retries),
            persona_roles=PersonaRoleBuilder(kube),
            workload=WorkloadPreparer(host_kube, host_aware),
            secret_sync=SecretSyncer(kube, host_kube),
            host_aware=host_aware,
            requeue_after_success=requeue_after_success,
        )


class StackHandler:
    def __init__(self, stack: Stack, services: StackServices):
        self.stack = stack
        self.services = services

    @contextmanager
    def _step(self, description: str) -> Iterator[None]:
        logger.log_step(description, self.stack.name, self.stack.namespace)
        try:
            yield
        except StepError:
            raise
        except Exception as e:
            logger.debug(
                f"Step failed for {self.stack.namespace}/{self.stack.name}: {e}",
                step=description,
                error_type=type(e).__name__,
            )
            raise StepError(description, e) from e

    async def sync(self) -> ReconcileResult:
        if self.stack.has_controller_ref:
            return await self.update()
        return await self.create()

    async def create(self) -> ReconcileResult:
        """
        Install the Stack.

        The finalizer goes on before anything else is created so a partial
        install can always be torn down.
        """
        services = self.services
        self.stack = self.stack.with_conditions(Condition.creating())

        with self._step("failed to add finalizer"):
            self.stack = await services.store.add_finalizer(self.stack)

        with self._step("failed to create RBAC permissions"):
            await services.rbac.provision(self.stack)

        with self._step("failed to process stack CRDs"):
            crds = await services.crd_labels.matched(self.stack)
            services.crd_labels.check_fulfilled(self.stack, crds)
            await services.crd_labels.add_namespace_labels(self.stack, crds)
            await services.crd_labels.add_multi_parent_labels(self.stack, crds)
            await services.persona_roles.create(self.stack, crds)

        await self._process_workload()

        self.stack = self.stack.with_conditions(
            Condition.available(), Condition.reconcile_success()
        )
        with self._step("failed to update stack status"):
            self.stack = await services.store.update_status(self.stack)

        return ReconcileResult(requeue_after=services.requeue_after_success)

    async def _process_workload(self) -> None:
        services = self.services

        with self._step("failed to prepare stack controller"):
            workload = services.workload.prepare(self.stack)
        if workload is None:
            return

        with self._step(f"failed to create stack controller {workload.kind.lower()}"):
            created = await services.workload.ensure(workload)
        ref = reference_to(workload, created)

        if workload.token_secret_ref is not None:
            with self._step("failed to sync stack controller service account secret"):
                await services.secret_sync.sync(
                    owner_reference_to(ref),
                    workload.service_account_ref,
                    workload.token_secret_ref,
                )

        self.stack = self.stack.with_controller_ref(ref)

    async def update(self) -> ReconcileResult:
        # Installed Stacks are immutable; upgrades reinstall them
        return ReconcileResult()

    async def delete(self) -> ReconcileResult:
        """
        Tear down everything the Stack installed, then drop the finalizer.

        Controller workloads go first so nothing keeps running with
        permissions that are about to disappear.
        """
        services = self.services
        stack = self.stack
        labels = parent_labels(stack.name, stack.namespace)
        controller_namespace = (
            services.host_aware.host_controller_namespace
            if services.host_aware is not None
            else stack.namespace
        )
        self.stack = stack.with_conditions(Condition.deleting())

        with self._step("failed to delete stack controller deployments"):
            await delete_all_of(
                services.host_kube.apps.delete_collection_namespaced_deployment,
                "cannot delete deployments",
                labels,
                namespace=controller_namespace,
            )

        with self._step("failed to delete stack controller jobs"):
            await delete_all_of(
                services.host_kube.batch.delete_collection_namespaced_job,
                "cannot delete jobs",
                labels,
                namespace=controller_namespace,
                propagation_policy="Background",
            )

        with self._step("failed to delete stack cluster roles"):
            await delete_all_of(
                services.kube.rbac.delete_collection_cluster_role,
                "cannot delete cluster roles",
                labels,
            )

        with self._step("failed to delete stack cluster role bindings"):
            await delete_all_of(
                services.kube.rbac.delete_collection_cluster_role_binding,
                "cannot delete cluster role bindings",
                labels,
            )

        with self._step("failed to remove stack CRD labels"):
            await services.crd_labels.remove_labels(self.stack)

        with self._step("failed to remove stack finalizer"):
            self.stack = await services.store.remove_finalizer(self.stack)

        logger.info(
            f"Stack {stack.namespace}/{stack.name} uninstalled",
            resource_name=stack.name,
            namespace=stack.namespace,
            operation="delete",
        )
        return ReconcileResult()


class StackHandlerFactory:
    """Builds a StackHandler per reconciliation around shared services."""

    def __init__(self, services: StackServices):
        self.services = services

    def __call__(self, stack: Stack) -> LifecycleHandler:
        return StackHandler(stack, self.services)
