"""
KubeVirt VM API client.

Wraps the Kubernetes ``CustomObjectsApi`` of the cluster running the virtual
machines (the "under" cluster) with namespace-scoped, name-keyed operations.
Every ``ApiException`` leaving this module is translated: a 404 becomes
:class:`VMNotFound`, anything else :class:`RemoteFailure`.
"""
from __future__ import annotations

import base64
import binascii
import logging
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

import kubernetes
import yaml
from kubernetes.client import (
    ApiClient,
    ApiException,
    CoreV1Api,
    CustomObjectsApi,
    V1DeleteOptions,
    V1ObjectMeta,
    V1Service,
    V1ServiceSpec,
)

from ..config import (
    KUBEVIRT_GROUP,
    KUBEVIRT_SUBRESOURCES_GROUP,
    KUBEVIRT_VERSION,
    KUBEVIRT_VM_PLURAL,
    KUBEVIRT_VMI_PLURAL,
    SERVICE_PREFIX,
    UNDERKUBE_CONFIG_KEY,
)
from ..errors import InvalidConfiguration, RemoteFailure, VMNotFound
from .management import MachineClient

logger = logging.getLogger(__name__)


@contextmanager
def _api_errors(action: str, namespace: str, name: Optional[str] = None) -> Iterator[None]:
    try:
        yield
    except ApiException as exc:
        if exc.status == 404 and name:
            raise VMNotFound(name, namespace) from exc
        target = f"{namespace}/{name}" if name else namespace
        raise RemoteFailure(exc, context=f"{action} {target}") from exc


class KubevirtClient:
    """CRUD and lifecycle operations on KubeVirt VirtualMachines."""

    def __init__(self, custom_objects: CustomObjectsApi, core_v1: CoreV1Api) -> None:
        self.custom_objects = custom_objects
        self.core_v1 = core_v1

    @classmethod
    def from_api_client(cls, api_client: ApiClient) -> "KubevirtClient":
        return cls(CustomObjectsApi(api_client), CoreV1Api(api_client))

    # -- VirtualMachine ----------------------------------------------------

    def create_virtual_machine(self, namespace: str, vm: dict) -> dict:
        with _api_errors("create virtual machine", namespace):
            return self.custom_objects.create_namespaced_custom_object(
                group=KUBEVIRT_GROUP,
                version=KUBEVIRT_VERSION,
                namespace=namespace,
                plural=KUBEVIRT_VM_PLURAL,
                body=vm,
            )

    def get_virtual_machine(self, namespace: str, name: str) -> dict:
        with _api_errors("get virtual machine", namespace, name):
            return self.custom_objects.get_namespaced_custom_object(
                group=KUBEVIRT_GROUP,
                version=KUBEVIRT_VERSION,
                namespace=namespace,
                plural=KUBEVIRT_VM_PLURAL,
                name=name,
            )

    def get_virtual_machine_instance(self, namespace: str, name: str) -> dict:
        with _api_errors("get virtual machine instance", namespace, name):
            return self.custom_objects.get_namespaced_custom_object(
                group=KUBEVIRT_GROUP,
                version=KUBEVIRT_VERSION,
                namespace=namespace,
                plural=KUBEVIRT_VMI_PLURAL,
                name=name,
            )

    def list_virtual_machines(self, namespace: str, label_selector: Optional[str] = None) -> List[dict]:
        kwargs = {"label_selector": label_selector} if label_selector else {}
        with _api_errors("list virtual machines", namespace):
            result = self.custom_objects.list_namespaced_custom_object(
                KUBEVIRT_GROUP, KUBEVIRT_VERSION, namespace, KUBEVIRT_VM_PLURAL, **kwargs
            )
        return result.get("items", [])

    def update_virtual_machine(self, namespace: str, vm: dict) -> dict:
        """Replace *vm*; the API server rejects it if ``metadata.resourceVersion`` is stale."""
        name = vm["metadata"]["name"]
        with _api_errors("update virtual machine", namespace, name):
            return self.custom_objects.replace_namespaced_custom_object(
                group=KUBEVIRT_GROUP,
                version=KUBEVIRT_VERSION,
                namespace=namespace,
                plural=KUBEVIRT_VM_PLURAL,
                name=name,
                body=vm,
            )

    def patch_virtual_machine(self, namespace: str, name: str, body: dict) -> dict:
        with _api_errors("patch virtual machine", namespace, name):
            return self.custom_objects.patch_namespaced_custom_object(
                group=KUBEVIRT_GROUP,
                version=KUBEVIRT_VERSION,
                namespace=namespace,
                plural=KUBEVIRT_VM_PLURAL,
                name=name,
                body=body,
            )

    def delete_virtual_machine(self, namespace: str, name: str, grace_period_seconds: Optional[int] = None) -> None:
        with _api_errors("delete virtual machine", namespace, name):
            self.custom_objects.delete_namespaced_custom_object(
                group=KUBEVIRT_GROUP,
                version=KUBEVIRT_VERSION,
                namespace=namespace,
                plural=KUBEVIRT_VM_PLURAL,
                name=name,
                grace_period_seconds=grace_period_seconds,
            )

    def start_virtual_machine(self, namespace: str, name: str) -> None:
        self.patch_virtual_machine(namespace, name, {"spec": {"runStrategy": "Always"}})

    def stop_virtual_machine(self, namespace: str, name: str) -> None:
        self.patch_virtual_machine(namespace, name, {"spec": {"runStrategy": "Halted"}})

    def restart_virtual_machine(self, namespace: str, name: str) -> None:
        path = (
            f"/apis/{KUBEVIRT_SUBRESOURCES_GROUP}/{KUBEVIRT_VERSION}"
            f"/namespaces/{namespace}/{KUBEVIRT_VM_PLURAL}/{name}/restart"
        )
        with _api_errors("restart virtual machine", namespace, name):
            self.custom_objects.api_client.call_api(
                path,
                "PUT",
                header_params={"Accept": "application/json", "Content-Type": "application/json"},
                body={},
                auth_settings=["BearerToken"],
                _preload_content=False,
            )

    # -- Network exposure --------------------------------------------------

    def create_service(self, vm_name: str, namespace: str) -> V1Service:
        service_name = f"{SERVICE_PREFIX}{vm_name}"
        service = V1Service(
            metadata=V1ObjectMeta(name=service_name),
            spec=V1ServiceSpec(selector={"name": service_name}),
        )
        with _api_errors("create service", namespace):
            return self.core_v1.create_namespaced_service(namespace=namespace, body=service)

    def delete_service(self, vm_name: str, namespace: str, grace_period_seconds: Optional[int] = None) -> None:
        service_name = f"{SERVICE_PREFIX}{vm_name}"
        with _api_errors("delete service", namespace):
            self.core_v1.delete_namespaced_service(
                name=service_name,
                namespace=namespace,
                body=V1DeleteOptions(grace_period_seconds=grace_period_seconds),
            )


ClientBuilder = Callable[[MachineClient, str, str], KubevirtClient]


def new_kubevirt_client(machine_client: MachineClient, secret_name: str, namespace: str) -> KubevirtClient:
    """
    Build a :class:`KubevirtClient` from the kubeconfig stored in a secret.

    The secret ``namespace/secret_name`` lives on the management cluster and
    must carry the under-cluster kubeconfig under the ``kubeconfig`` key. Every
    way this can be wrong is a configuration problem and raises
    :class:`InvalidConfiguration`; only unexpected API failures while reading
    the secret are reported as :class:`RemoteFailure`.
    """
    if not secret_name:
        raise InvalidConfiguration("KubeVirt credentials secret - invalid empty secretName")
    if not namespace:
        raise InvalidConfiguration("KubeVirt credentials secret - invalid empty namespace")

    try:
        secret = machine_client.user_data_secret(secret_name, namespace)
    except ApiException as exc:
        if exc.status == 404:
            raise InvalidConfiguration(f"KubeVirt credentials secret {namespace}/{secret_name} not found") from exc
        raise RemoteFailure(exc, context=f"read secret {namespace}/{secret_name}") from exc

    data = secret.data or {}
    if UNDERKUBE_CONFIG_KEY not in data:
        raise InvalidConfiguration(
            f"KubeVirt credentials secret {secret_name} did not contain key {UNDERKUBE_CONFIG_KEY}"
        )

    try:
        raw = base64.b64decode(data[UNDERKUBE_CONFIG_KEY], validate=True)
        config_dict = yaml.safe_load(raw)
        if not isinstance(config_dict, dict):
            raise InvalidConfiguration(f"KubeVirt credentials secret {secret_name} does not hold a kubeconfig")
        api_client = kubernetes.config.new_client_from_config_dict(config_dict=config_dict)
    except (binascii.Error, yaml.YAMLError, kubernetes.config.ConfigException) as exc:
        raise InvalidConfiguration(f"KubeVirt credentials secret {secret_name} holds an unusable kubeconfig: {exc}") from exc

    logger.debug("Built KubeVirt client from credentials secret %s/%s", namespace, secret_name)
    return KubevirtClient.from_api_client(api_client)
