"""Access to the management cluster: Machine objects and their credential secrets."""
from __future__ import annotations

import logging

from kubernetes.client import CoreV1Api, CustomObjectsApi, V1Secret

from ..config import MACHINE_GROUP, MACHINE_PLURAL, MACHINE_VERSION

logger = logging.getLogger(__name__)


class MachineClient:
    """Thin wrapper over the management cluster APIs the actuator touches.

    Errors are the raw ``kubernetes.client.ApiException``; callers decide what a
    missing secret or a failed patch means for them.
    """

    def __init__(self, core_v1: CoreV1Api, custom_objects: CustomObjectsApi) -> None:
        self.core_v1 = core_v1
        self.custom_objects = custom_objects

    def user_data_secret(self, name: str, namespace: str) -> V1Secret:
        logger.debug("Reading secret %s/%s", namespace, name)
        return self.core_v1.read_namespaced_secret(name=name, namespace=namespace)

    def patch_machine(self, name: str, namespace: str, body: dict) -> dict:
        return self.custom_objects.patch_namespaced_custom_object(
            group=MACHINE_GROUP,
            version=MACHINE_VERSION,
            namespace=namespace,
            plural=MACHINE_PLURAL,
            name=name,
            body=body,
        )

    def patch_machine_status(self, name: str, namespace: str, status: dict) -> dict:
        return self.custom_objects.patch_namespaced_custom_object_status(
            group=MACHINE_GROUP,
            version=MACHINE_VERSION,
            namespace=namespace,
            plural=MACHINE_PLURAL,
            name=name,
            body={"status": status},
        )
