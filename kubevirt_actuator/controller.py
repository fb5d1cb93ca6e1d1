"""
controller.py
-------------
Kopf-based operator that backs OpenShift ``Machine`` resources with KubeVirt
``VirtualMachine`` objects.

Key responsibilities
~~~~~~~~~~~~~~~~~~~~
* Bootstrap the operator (tune kopf, load Kubernetes configuration, build the
  :class:`~kubevirt_actuator.reconciler.Reconciler`).
* Route machine events to the reconciler: create when no VM exists yet,
  update otherwise, delete when the machine goes away.
* Keep the machine's finalizer until its VM is really gone.

Retry signalling is delegated to kopf: the reconciler raises
``kopf.TemporaryError`` subclasses for requeues and ``kopf.PermanentError``
subclasses for configuration problems, and those propagate untouched.
"""
from __future__ import annotations

import copy
from typing import Dict

import kopf
import kubernetes
from kopf import OperatorSettings
from kubernetes.client import CoreV1Api, CustomObjectsApi

from .clients import MachineClient
from .config import (
    MACHINE_FINALIZER,
    MACHINE_GROUP,
    MACHINE_PLURAL,
    MACHINE_VERSION,
    PROVIDER_SPEC_KIND,
    WATCH_SERVER_TIMEOUT,
    RequeuePolicy,
)
from .reconciler import Reconciler

# ---------------------------------------------------------------------------
# Bootstrap helpers ----------------------------------------------------------
# ---------------------------------------------------------------------------


def _init_kubernetes_clients(logger: kopf.Logger) -> tuple[CoreV1Api, CustomObjectsApi]:
    """Return (core_v1, custom_objects) for the management cluster."""
    try:
        kubernetes.config.load_kube_config()
        logger.info("Loaded kube-config from local file")
    except kubernetes.config.config_exception.ConfigException:
        try:
            kubernetes.config.load_incluster_config()
            logger.info("Loaded in-cluster kube-config")
        except kubernetes.config.config_exception.ConfigException as exc:
            logger.critical("Failed to load Kubernetes configuration: %s", exc)
            raise kopf.PermanentError("Cannot load Kubernetes config") from exc
    return CoreV1Api(), CustomObjectsApi()


def is_kubevirt_machine(spec: dict, **_: Dict[str, object]) -> bool:
    """Only machines whose provider spec is ours are handled."""
    value = (spec.get("providerSpec") or {}).get("value") or {}
    return value.get("kind") == PROVIDER_SPEC_KIND


def _machine_from_body(body: kopf.Body) -> dict:
    # kopf bodies are read-only views; the reconciler works on a plain copy.
    return copy.deepcopy(dict(body))


# ---------------------------------------------------------------------------
# Kopf handlers --------------------------------------------------------------
# ---------------------------------------------------------------------------


@kopf.on.startup()
def configure_operator(settings: OperatorSettings, memo: kopf.Memo, logger: kopf.Logger, **_: Dict[str, object]) -> None:
    """Tune watch timeouts, take over the machine finalizer and build the reconciler."""
    settings.watching.server_timeout = WATCH_SERVER_TIMEOUT
    settings.persistence.finalizer = MACHINE_FINALIZER
    logger.info("Kopf watch server_timeout set to %s", settings.watching.server_timeout)

    if getattr(memo, "reconciler", None) is None:
        core_v1, custom_objects = _init_kubernetes_clients(logger)
        memo.reconciler = Reconciler(MachineClient(core_v1, custom_objects), policy=RequeuePolicy())
    logger.info("Machine reconciler ready")


@kopf.on.resume(MACHINE_GROUP, MACHINE_VERSION, MACHINE_PLURAL, when=is_kubevirt_machine)
@kopf.on.create(MACHINE_GROUP, MACHINE_VERSION, MACHINE_PLURAL, when=is_kubevirt_machine)
@kopf.on.update(MACHINE_GROUP, MACHINE_VERSION, MACHINE_PLURAL, when=is_kubevirt_machine)
def reconcile_machine(body: kopf.Body, memo: kopf.Memo, logger: kopf.Logger, retry: int = 0, **_: Dict[str, object]) -> None:
    """Create the VM for a machine, or update it if it already exists."""
    machine = _machine_from_body(body)
    name = machine["metadata"]["name"]
    reconciler: Reconciler = memo.reconciler

    logger.info(f"Reconciling machine '{name}' (Attempt #{retry})")
    if reconciler.exists(machine):
        logger.info(f"VM for machine '{name}' exists, updating")
        reconciler.update(machine)
    else:
        logger.info(f"No VM for machine '{name}', creating")
        reconciler.create(machine)


@kopf.on.delete(MACHINE_GROUP, MACHINE_VERSION, MACHINE_PLURAL, when=is_kubevirt_machine)
def delete_machine(body: kopf.Body, memo: kopf.Memo, logger: kopf.Logger, **_: Dict[str, object]) -> None:
    """Tear down the VM; the finalizer is only released once the VM is gone."""
    machine = _machine_from_body(body)
    name = machine["metadata"]["name"]
    reconciler: Reconciler = memo.reconciler

    logger.info(f"Handling deletion for machine '{name}'.")
    reconciler.delete(machine)

    if reconciler.exists(machine):
        raise kopf.TemporaryError(
            f"VM for machine {name} is still terminating", delay=reconciler.policy.short_delay
        )
    logger.info(f"VM for machine '{name}' is gone.")
