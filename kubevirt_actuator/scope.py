"""
Per-operation context for reconciling a single ``Machine``.

A :class:`MachineScope` renders the VirtualMachine for its machine, collects
the provider status produced by the operation and writes everything back to
the API server when the ``with`` block that owns it ends, whatever the outcome.
"""
from __future__ import annotations

import copy
import logging
from datetime import UTC, datetime, timedelta
from typing import Optional

from kubernetes.client import ApiException

from .clients import ClientBuilder, KubevirtClient, MachineClient
from .config import INSTANCE_STATE_ANNOTATION, INSTANCE_TYPE_LABEL
from .errors import ActuatorError
from .models import (
    ProviderCondition,
    provider_spec_from_machine,
    provider_status_from_machine,
    vm_is_ready,
    vm_printable_status,
)
from .render import format_provider_id, machine_to_virtual_machine

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MachineScope:
    def __init__(self, machine: dict, machine_client: MachineClient, client_builder: ClientBuilder) -> None:
        self.machine = copy.deepcopy(machine)
        self.machine_client = machine_client
        self.provider_spec = provider_spec_from_machine(self.machine)
        self.virtual_machine = machine_to_virtual_machine(self.machine, self.provider_spec)
        self.kubevirt_client: KubevirtClient = client_builder(
            machine_client, self.provider_spec.credentials_secret_name, self.machine_namespace
        )
        self.provider_status = provider_status_from_machine(self.machine)
        self._patched = False

    def __enter__(self) -> "MachineScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            self.patch_machine()
        except Exception as patch_exc:  # noqa: BLE001 - the operation's own error wins
            if exc is None:
                raise
            logger.error("%s: failed to patch machine after error %r: %s", self.machine_name, exc, patch_exc)
        return False

    @property
    def machine_name(self) -> str:
        return self.machine.get("metadata", {}).get("name", "")

    @property
    def machine_namespace(self) -> str:
        return self.machine.get("metadata", {}).get("namespace", "")

    @property
    def provider_id(self) -> Optional[str]:
        return self.machine.get("spec", {}).get("providerID")

    def set_provider_id(self, vm: dict) -> None:
        meta = vm.get("metadata", {})
        provider_id = format_provider_id(
            meta.get("namespace") or self.machine_namespace,
            meta.get("name") or self.virtual_machine["metadata"]["name"],
        )
        if self.provider_id == provider_id:
            return
        logger.info("%s: setting providerID %s", self.machine_name, provider_id)
        self.machine.setdefault("spec", {})["providerID"] = provider_id

    def set_machine_cloud_provider_specifics(self, vm: dict) -> None:
        """Surface VM facts as machine labels and annotations."""
        meta = vm.get("metadata")
        if not isinstance(meta, dict) or not meta.get("name"):
            raise ActuatorError(f"{self.machine_name}: virtual machine object has no metadata.name")
        if not meta.get("namespace"):
            raise ActuatorError(f"{self.machine_name}: virtual machine {meta['name']} has no metadata.namespace")
        if not isinstance(vm.get("status") or {}, dict):
            raise ActuatorError(f"{self.machine_name}: virtual machine {meta['name']} has a malformed status")

        machine_meta = self.machine.setdefault("metadata", {})
        labels = machine_meta.get("labels") or {}
        annotations = machine_meta.get("annotations") or {}
        labels[INSTANCE_TYPE_LABEL] = self.provider_spec.instance_type
        annotations[INSTANCE_STATE_ANNOTATION] = vm_printable_status(vm).value
        machine_meta["labels"] = labels
        machine_meta["annotations"] = annotations

    def set_provider_status(self, vm: Optional[dict], condition: ProviderCondition) -> None:
        """Record *condition*; with ``vm=None`` the VM-derived fields are cleared."""
        self.provider_status.set_condition(condition)
        if vm is None:
            self.provider_status.vm_name = None
            self.provider_status.vm_state = None
            self.provider_status.ready = None
            return
        self.provider_status.vm_name = vm.get("metadata", {}).get("name")
        self.provider_status.vm_state = vm_printable_status(vm).value
        self.provider_status.ready = vm_is_ready(vm)

    def update_allowed(self, grace_seconds: float) -> bool:
        """
        Whether a missing VM may still show up on its own.

        True when the machine already carries a provider ID (so a VM was
        created for it) and the machine itself was created less than
        *grace_seconds* ago. A lagging cache right after creation looks
        exactly like that. The window is anchored on
        ``metadata.creationTimestamp``, which patching the machine never moves.
        """
        if not self.provider_id:
            return False
        created = self.machine.get("metadata", {}).get("creationTimestamp")
        if not created:
            return False
        try:
            stamp = datetime.fromisoformat(str(created).replace("Z", "+00:00"))
        except ValueError:
            logger.warning("%s: unparsable metadata.creationTimestamp %r", self.machine_name, created)
            return False
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=UTC)
        return _utcnow() < stamp + timedelta(seconds=grace_seconds)

    def patch_machine(self) -> None:
        """Write labels, annotations, providerID and provider status back. Runs at most once."""
        if self._patched:
            return
        self._patched = True

        name, namespace = self.machine_name, self.machine_namespace
        meta = self.machine.get("metadata", {})
        body: dict = {
            "metadata": {
                "labels": meta.get("labels") or {},
                "annotations": meta.get("annotations") or {},
            }
        }
        if self.provider_id:
            body["spec"] = {"providerID": self.provider_id}
        status = {
            "providerStatus": self.provider_status.to_dict(),
            "lastUpdated": _utcnow().isoformat(),
        }

        logger.debug("%s: patching machine", name)
        try:
            self.machine_client.patch_machine(name, namespace, body)
            self.machine_client.patch_machine_status(name, namespace, status)
        except ApiException as exc:
            raise ActuatorError(f"{name}: failed to patch machine: {exc.status} {exc.reason}") from exc
