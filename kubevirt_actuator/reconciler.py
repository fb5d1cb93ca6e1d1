"""
Reconciler driving KubeVirt VirtualMachines from ``Machine`` resources.

Each public operation builds one :class:`MachineScope`, talks to the KubeVirt
API through it and, for the mutating operations, lets the scope write the
machine's status back on exit. Outcomes are conveyed the way kopf expects:

* return normally: done;
* :class:`RequeueAfterError`: run the same operation again after ``delay``;
* :class:`InvalidConfiguration`: do not retry until the machine changes;
* any other exception: retry with the caller's default backoff.
"""
from __future__ import annotations

import logging
from typing import Optional

from .clients import ClientBuilder, MachineClient, new_kubevirt_client
from .config import RequeuePolicy
from .errors import ActuatorError, KubevirtError, RequeueAfterError, VMNotFound
from .models import condition_failed, condition_success, vm_is_ready
from .scope import MachineScope

logger = logging.getLogger(__name__)


class Reconciler:
    """Create, update, delete and look up the VM backing a machine."""

    def __init__(
        self,
        machine_client: MachineClient,
        client_builder: ClientBuilder = new_kubevirt_client,
        policy: Optional[RequeuePolicy] = None,
    ) -> None:
        self.machine_client = machine_client
        self.client_builder = client_builder
        self.policy = policy or RequeuePolicy()

    def create(self, machine: dict) -> None:
        scope = self._prepare_scope(machine, "create")
        with scope:
            try:
                vm = scope.kubevirt_client.create_virtual_machine(scope.machine_namespace, scope.virtual_machine)
            except KubevirtError as exc:
                logger.error("%s: error creating machine: %s", scope.machine_name, exc)
                scope.set_provider_status(None, condition_failed(str(exc)))
                raise ActuatorError(f"failed to create virtual machine: {exc}") from exc

            logger.info("Created Machine %s", scope.machine_name)
            scope.set_provider_id(vm)
            try:
                scope.set_machine_cloud_provider_specifics(vm)
            except ActuatorError as exc:
                raise ActuatorError(f"failed to set machine cloud provider specifics: {exc}") from exc
            scope.set_provider_status(vm, condition_success())

            self._requeue_if_vm_pending(vm, scope.machine_name)

    def delete(self, machine: dict) -> None:
        scope = self._prepare_scope(machine, "delete")
        with scope:
            vm_name = scope.virtual_machine["metadata"]["name"]
            try:
                existing = scope.kubevirt_client.get_virtual_machine(scope.machine_namespace, vm_name)
            except VMNotFound:
                logger.info("%s: VM does not exist", scope.machine_name)
                return
            except KubevirtError as exc:
                logger.error("%s: error getting existing VM: %s", scope.machine_name, exc)
                raise

            if existing is None:
                logger.warning("%s: VM not found to delete for machine", scope.machine_name)
                return

            try:
                scope.kubevirt_client.delete_virtual_machine(
                    scope.machine_namespace, vm_name, grace_period_seconds=self.policy.delete_grace_period
                )
            except KubevirtError as exc:
                raise ActuatorError(f"failed to delete VM: {exc}") from exc

            logger.info("Deleted machine %s", scope.machine_name)

    def update(self, machine: dict) -> None:
        scope = self._prepare_scope(machine, "update")
        with scope:
            vm_name = scope.virtual_machine["metadata"]["name"]
            try:
                existing = scope.kubevirt_client.get_virtual_machine(scope.machine_namespace, vm_name)
            except VMNotFound:
                existing = None
            except KubevirtError as exc:
                logger.error("%s: error getting existing VM: %s", scope.machine_name, exc)
                raise

            if existing is None:
                if scope.update_allowed(self.policy.update_grace):
                    logger.info(
                        "%s: possible eventual-consistency discrepancy; returning an error to requeue",
                        scope.machine_name,
                    )
                    raise RequeueAfterError(self.policy.short_delay, "VM not visible yet")
                logger.warning("%s: attempted to update machine but the VM was not found", scope.machine_name)
                # Clear the VM details; retrying soon would only repeat the same lookup.
                scope.set_provider_status(None, condition_success())
                raise RequeueAfterError(self.policy.long_delay, "VM missing")

            scope.virtual_machine["metadata"]["resourceVersion"] = existing.get("metadata", {}).get("resourceVersion")
            try:
                updated = scope.kubevirt_client.update_virtual_machine(scope.machine_namespace, scope.virtual_machine)
            except KubevirtError as exc:
                raise ActuatorError(f"failed to update VM: {exc}") from exc

            scope.set_provider_id(updated)
            try:
                scope.set_machine_cloud_provider_specifics(updated)
            except ActuatorError as exc:
                raise ActuatorError(f"failed to set machine cloud provider specifics: {exc}") from exc

            logger.info("Updated machine %s", scope.machine_name)
            scope.set_provider_status(updated, condition_success())

            try:
                current = scope.kubevirt_client.get_virtual_machine(scope.machine_namespace, vm_name)
            except KubevirtError as exc:
                logger.error("%s: error getting updated VM: %s", scope.machine_name, exc)
                current = None
            self._requeue_if_vm_pending(current or updated, scope.machine_name)

    def exists(self, machine: dict) -> bool:
        # Read-only: the scope is never entered, so nothing is patched back.
        scope = self._prepare_scope(machine, "check exists")
        vm_name = scope.virtual_machine["metadata"]["name"]
        try:
            existing = scope.kubevirt_client.get_virtual_machine(scope.machine_namespace, vm_name)
        except VMNotFound:
            logger.info("%s: VM does not exist", scope.machine_name)
            return False
        except KubevirtError as exc:
            logger.error("%s: error getting existing VM: %s", scope.machine_name, exc)
            raise
        if existing is None:
            logger.info("%s: VM does not exist", scope.machine_name)
            return False
        return True

    def _prepare_scope(self, machine: dict, action: str) -> MachineScope:
        scope = MachineScope(machine, self.machine_client, self.client_builder)
        logger.info("%s: %s machine", scope.machine_name, action)
        return scope

    def _requeue_if_vm_pending(self, vm: dict, machine_name: str) -> None:
        # Keep the operator coming back until the VM reports ready, so the
        # status we publish does not go stale.
        if not vm_is_ready(vm):
            logger.info("%s: VM status is not ready, returning an error to requeue", machine_name)
            raise RequeueAfterError(self.policy.short_delay, "VM not ready")
