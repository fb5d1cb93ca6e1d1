"""Render a KubeVirt ``VirtualMachine`` manifest from a ``Machine``."""
from __future__ import annotations

from typing import Dict, Tuple

from .config import (
    CLUSTER_ID_LABEL,
    KUBEVIRT_GROUP,
    KUBEVIRT_VERSION,
    MANAGED_BY,
    PROVIDER_ID_SCHEME,
    SERVICE_PREFIX,
)
from .errors import InvalidConfiguration
from .models import KubevirtMachineProviderSpec

BOOT_VOLUME = "bootvolume"
CLOUD_INIT_VOLUME = "cloudinitdisk"
MAIN_NETWORK = "main"


def format_provider_id(namespace: str, name: str) -> str:
    return f"{PROVIDER_ID_SCHEME}{namespace}/{name}"


def parse_provider_id(provider_id: str) -> Tuple[str, str]:
    """Return ``(namespace, name)`` encoded in a ``kubevirt://`` provider ID."""
    if not provider_id.startswith(PROVIDER_ID_SCHEME):
        raise ValueError(f"not a KubeVirt provider ID: {provider_id!r}")
    namespace, sep, name = provider_id[len(PROVIDER_ID_SCHEME):].partition("/")
    if not sep or not namespace or not name:
        raise ValueError(f"malformed KubeVirt provider ID: {provider_id!r}")
    return namespace, name


def machine_to_virtual_machine(machine: dict, provider_spec: KubevirtMachineProviderSpec) -> dict:
    """
    Build the VirtualMachine for *machine*.

    The result depends only on the machine's name, namespace, cluster label and
    provider spec, so rendering the same machine twice yields equal manifests.
    The VM is named after the machine and lives in the machine's namespace.
    """
    meta = machine.get("metadata", {})
    name = meta.get("name")
    namespace = meta.get("namespace")
    if not name or not namespace:
        raise InvalidConfiguration("machine must have both a name and a namespace")
    if not provider_spec.source_pvc_name:
        raise InvalidConfiguration(f"machine {name}: providerSpec.sourcePvcName must be set")

    labels: Dict[str, str] = {
        "kubevirt.io/vm": name,
        "managed-by": MANAGED_BY,
    }
    cluster_id = meta.get("labels", {}).get(CLUSTER_ID_LABEL)
    if cluster_id:
        labels[CLUSTER_ID_LABEL] = cluster_id

    boot_volume_name = f"{name}-{BOOT_VOLUME}"
    pvc_spec: dict = {
        "accessModes": ["ReadWriteOnce"],
        "resources": {"requests": {"storage": provider_spec.requested_storage}},
    }
    if provider_spec.storage_class_name:
        pvc_spec["storageClassName"] = provider_spec.storage_class_name

    disks = [{"name": BOOT_VOLUME, "disk": {"bus": "virtio"}}]
    volumes = [{"name": BOOT_VOLUME, "dataVolume": {"name": boot_volume_name}}]
    if provider_spec.ignition_secret_name:
        disks.append({"name": CLOUD_INIT_VOLUME, "disk": {"bus": "virtio"}})
        volumes.append({
            "name": CLOUD_INIT_VOLUME,
            "cloudInitConfigDrive": {"secretRef": {"name": provider_spec.ignition_secret_name}},
        })

    if provider_spec.network_name:
        interfaces = [{"name": MAIN_NETWORK, "bridge": {}}]
        networks = [{"name": MAIN_NETWORK, "multus": {"networkName": provider_spec.network_name}}]
    else:
        interfaces = [{"name": MAIN_NETWORK, "masquerade": {}}]
        networks = [{"name": MAIN_NETWORK, "pod": {}}]

    return {
        "apiVersion": f"{KUBEVIRT_GROUP}/{KUBEVIRT_VERSION}",
        "kind": "VirtualMachine",
        "metadata": {"name": name, "namespace": namespace, "labels": labels},
        "spec": {
            "runStrategy": "Always",
            "dataVolumeTemplates": [
                {
                    "metadata": {"name": boot_volume_name},
                    "spec": {
                        "pvc": pvc_spec,
                        "source": {
                            "pvc": {
                                "name": provider_spec.source_pvc_name,
                                "namespace": provider_spec.source_pvc_namespace or namespace,
                            }
                        },
                    },
                }
            ],
            "template": {
                "metadata": {
                    # The "name" label is what the worker Service selects on.
                    "labels": {"kubevirt.io/vm": name, "name": f"{SERVICE_PREFIX}{name}"},
                },
                "spec": {
                    "hostname": name,
                    "domain": {
                        "cpu": {"cores": provider_spec.requested_cpu},
                        "resources": {"requests": {"memory": provider_spec.requested_memory}},
                        "devices": {"disks": disks, "interfaces": interfaces},
                    },
                    "networks": networks,
                    "volumes": volumes,
                },
            },
        },
    }
