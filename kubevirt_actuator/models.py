"""
Typed views over the provider-specific parts of a ``Machine``.

The ``Machine`` object itself stays a plain dict, exactly as the API server
returns it; only ``spec.providerSpec.value`` and ``status.providerStatus`` are
modelled, because this package owns their meaning.
"""
from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import PROVIDER_API_VERSION, PROVIDER_STATUS_KIND
from .errors import InvalidConfiguration


class ConditionType(str, Enum):
    MACHINE_CREATION = "MachineCreation"


class ConditionReason(str, Enum):
    SUCCEEDED = "MachineCreationSucceeded"
    FAILED = "MachineCreationFailed"


class VMPrintableStatus(str, Enum):
    """``status.printableStatus`` values reported by KubeVirt for a VirtualMachine."""

    STOPPED = "Stopped"
    PROVISIONING = "Provisioning"
    STARTING = "Starting"
    RUNNING = "Running"
    PAUSED = "Paused"
    STOPPING = "Stopping"
    TERMINATING = "Terminating"
    MIGRATING = "Migrating"
    UNKNOWN = "Unknown"


class KubevirtMachineProviderSpec(BaseModel):
    """``spec.providerSpec.value`` of a KubeVirt-backed machine."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    source_pvc_name: str = Field(default="", alias="sourcePvcName")
    source_pvc_namespace: Optional[str] = Field(default=None, alias="sourcePvcNamespace")
    requested_memory: str = Field(default="2048M", alias="requestedMemory")
    requested_cpu: int = Field(default=2, alias="requestedCPU", ge=1)
    requested_storage: str = Field(default="35Gi", alias="requestedStorage")
    storage_class_name: Optional[str] = Field(default=None, alias="storageClassName")
    ignition_secret_name: Optional[str] = Field(default=None, alias="ignitionSecretName")
    network_name: Optional[str] = Field(default=None, alias="networkName")
    credentials_secret_name: str = Field(default="", alias="credentialsSecretName")

    @property
    def instance_type(self) -> str:
        return f"{self.requested_cpu}cpu-{self.requested_memory}"


class ProviderCondition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: ConditionType = ConditionType.MACHINE_CREATION
    status: str
    reason: ConditionReason
    message: str = ""
    last_probe_time: Optional[str] = Field(default=None, alias="lastProbeTime")
    last_transition_time: Optional[str] = Field(default=None, alias="lastTransitionTime")


class KubevirtMachineProviderStatus(BaseModel):
    """``status.providerStatus`` written back after every operation."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_version: str = Field(default=PROVIDER_API_VERSION, alias="apiVersion")
    kind: str = PROVIDER_STATUS_KIND
    vm_name: Optional[str] = Field(default=None, alias="vmName")
    vm_state: Optional[str] = Field(default=None, alias="vmState")
    ready: Optional[bool] = None
    conditions: List[ProviderCondition] = Field(default_factory=list)

    def set_condition(self, condition: ProviderCondition) -> None:
        """Replace the current condition, keeping its transition time if the status is unchanged."""
        now = _now()
        condition = condition.model_copy(update={"last_probe_time": now})
        previous = next((c for c in self.conditions if c.type == condition.type), None)
        if previous is not None and previous.status == condition.status and previous.last_transition_time:
            condition.last_transition_time = previous.last_transition_time
        else:
            condition.last_transition_time = now
        self.conditions = [condition]

    def to_dict(self) -> dict:
        # None values are kept so a merge patch clears stale fields.
        return self.model_dump(by_alias=True, mode="json")


def condition_success() -> ProviderCondition:
    return ProviderCondition(
        status="True",
        reason=ConditionReason.SUCCEEDED,
        message="Machine successfully created",
    )


def condition_failed(message: str = "") -> ProviderCondition:
    return ProviderCondition(status="False", reason=ConditionReason.FAILED, message=message)


def provider_spec_from_machine(machine: dict) -> KubevirtMachineProviderSpec:
    """Parse ``spec.providerSpec.value`` or raise :class:`InvalidConfiguration`."""
    value = machine.get("spec", {}).get("providerSpec", {}).get("value") or {}
    try:
        return KubevirtMachineProviderSpec.model_validate(value)
    except ValidationError as exc:
        name = machine.get("metadata", {}).get("name")
        raise InvalidConfiguration(f"invalid providerSpec for machine {name}: {exc}") from exc


def provider_status_from_machine(machine: dict) -> KubevirtMachineProviderStatus:
    """Return the stored provider status, starting afresh if it cannot be read."""
    value = machine.get("status", {}).get("providerStatus") or {}
    try:
        return KubevirtMachineProviderStatus.model_validate(value)
    except ValidationError:
        return KubevirtMachineProviderStatus()


def vm_is_ready(vm: dict) -> bool:
    return bool((vm.get("status") or {}).get("ready", False))


def vm_printable_status(vm: dict) -> VMPrintableStatus:
    raw = (vm.get("status") or {}).get("printableStatus")
    try:
        return VMPrintableStatus(raw)
    except ValueError:
        return VMPrintableStatus.UNKNOWN


def _now() -> str:
    return datetime.now(UTC).isoformat()
