"""Reconcile OpenShift ``Machine`` resources against KubeVirt virtual machines."""

from .errors import (
    ActuatorError,
    InvalidConfiguration,
    KubevirtError,
    RemoteFailure,
    RequeueAfterError,
    VMNotFound,
)
from .reconciler import Reconciler
from .scope import MachineScope

__version__ = "0.1.0"

__all__ = [
    "ActuatorError",
    "InvalidConfiguration",
    "KubevirtError",
    "MachineScope",
    "Reconciler",
    "RemoteFailure",
    "RequeueAfterError",
    "VMNotFound",
]
