"""
Static configuration for the KubeVirt machine actuator.

Values that operators may want to tune are read from the environment (a local
``.env`` file is honoured for development); everything else is a constant.
"""
from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Ensure ENV is loaded *early* so everything that relies on os.getenv works.
load_dotenv()

# ---------------------------------------------------------------------------
# API coordinates ------------------------------------------------------------
# ---------------------------------------------------------------------------
MACHINE_GROUP = "machine.openshift.io"
MACHINE_VERSION = "v1beta1"
MACHINE_PLURAL = "machines"
MACHINE_FINALIZER = "machine.machine.openshift.io"

KUBEVIRT_GROUP = "kubevirt.io"
KUBEVIRT_VERSION = "v1"
KUBEVIRT_VM_PLURAL = "virtualmachines"
KUBEVIRT_VMI_PLURAL = "virtualmachineinstances"
KUBEVIRT_SUBRESOURCES_GROUP = "subresources.kubevirt.io"

PROVIDER_SPEC_KIND = "KubevirtMachineProviderSpec"
PROVIDER_STATUS_KIND = "KubevirtMachineProviderStatus"
PROVIDER_API_VERSION = "kubevirtproviderconfig.openshift.io/v1alpha1"
PROVIDER_ID_SCHEME = "kubevirt://"

# Key inside the credentials secret holding the kubeconfig of the cluster that runs the VMs.
UNDERKUBE_CONFIG_KEY = "kubeconfig"
SERVICE_PREFIX = "worker-"

INSTANCE_STATE_ANNOTATION = "machine.openshift.io/instance-state"
INSTANCE_TYPE_LABEL = "machine.openshift.io/instance-type"
CLUSTER_ID_LABEL = "machine.openshift.io/cluster-api-cluster"
MANAGED_BY = "kubevirt-machine-actuator"

# ---------------------------------------------------------------------------
# Tunables -------------------------------------------------------------------
# ---------------------------------------------------------------------------
REQUEUE_AFTER_SECONDS = float(os.getenv("REQUEUE_AFTER_SECONDS", "20"))
REQUEUE_AFTER_FATAL_SECONDS = float(os.getenv("REQUEUE_AFTER_FATAL_SECONDS", "180"))
UPDATE_GRACE_SECONDS = float(os.getenv("UPDATE_GRACE_SECONDS", str(REQUEUE_AFTER_SECONDS)))
DELETE_GRACE_PERIOD_SECONDS = int(os.getenv("DELETE_GRACE_PERIOD_SECONDS", "10"))
WATCH_SERVER_TIMEOUT = int(os.getenv("WATCH_SERVER_TIMEOUT", "210"))


class RequeuePolicy(BaseModel):
    """Retry delays handed back to the operator, in seconds."""

    short_delay: float = Field(default=REQUEUE_AFTER_SECONDS, gt=0)
    long_delay: float = Field(default=REQUEUE_AFTER_FATAL_SECONDS, gt=0)
    # How long after the last status write a missing VM is still blamed on eventual consistency.
    update_grace: float = Field(default=UPDATE_GRACE_SECONDS, ge=0)
    delete_grace_period: int = Field(default=DELETE_GRACE_PERIOD_SECONDS, ge=0)
