import copy
import logging
from datetime import UTC, datetime

import pytest
from kubernetes.client import ApiException

from kubevirt_actuator.config import PROVIDER_SPEC_KIND, RequeuePolicy
from kubevirt_actuator.errors import RemoteFailure, VMNotFound
from kubevirt_actuator.reconciler import Reconciler

logging.basicConfig(level=logging.DEBUG)

TEST_NAMESPACE = "openshift-machine-api"
TEST_MACHINE = "worker-0"


def make_machine(name=TEST_MACHINE, namespace=TEST_NAMESPACE, provider_id=None, created_at=None, last_updated=None, **provider_spec):
    value = {
        "apiVersion": "kubevirtproviderconfig.openshift.io/v1alpha1",
        "kind": PROVIDER_SPEC_KIND,
        "sourcePvcName": "rhcos-golden",
        "credentialsSecretName": "underkube-kubeconfig",
        "requestedMemory": "4096M",
        "requestedCPU": 4,
    }
    value.update(provider_spec)
    machine = {
        "apiVersion": "machine.openshift.io/v1beta1",
        "kind": "Machine",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": {"machine.openshift.io/cluster-api-cluster": "test-cluster"},
        },
        "spec": {"providerSpec": {"value": value}},
        "status": {},
    }
    if provider_id:
        machine["spec"]["providerID"] = provider_id
    if created_at:
        machine["metadata"]["creationTimestamp"] = created_at
    if last_updated:
        machine["status"]["lastUpdated"] = last_updated
    return machine


class FakeKubevirtClient:
    """In-memory stand-in for KubevirtClient, keyed by (namespace, name)."""

    def __init__(self):
        self.vms = {}
        self.ready = True
        self.failures = {}
        self.calls = []

    def _maybe_fail(self, op):
        if op in self.failures:
            raise self.failures[op]

    def _status(self):
        return {"ready": self.ready, "printableStatus": "Running" if self.ready else "Starting"}

    def add_vm(self, namespace, name, resource_version="1"):
        self.vms[(namespace, name)] = {
            "apiVersion": "kubevirt.io/v1",
            "kind": "VirtualMachine",
            "metadata": {"name": name, "namespace": namespace, "resourceVersion": resource_version},
            "spec": {},
            "status": self._status(),
        }

    def create_virtual_machine(self, namespace, vm):
        name = vm["metadata"]["name"]
        self.calls.append(("create", namespace, name))
        self._maybe_fail("create")
        if (namespace, name) in self.vms:
            raise RemoteFailure(ApiException(status=409, reason="AlreadyExists"))
        stored = copy.deepcopy(vm)
        stored["metadata"]["resourceVersion"] = "1"
        stored["status"] = self._status()
        self.vms[(namespace, name)] = stored
        return copy.deepcopy(stored)

    def get_virtual_machine(self, namespace, name):
        self.calls.append(("get", namespace, name))
        self._maybe_fail("get")
        if (namespace, name) not in self.vms:
            raise VMNotFound(name, namespace)
        vm = copy.deepcopy(self.vms[(namespace, name)])
        vm["status"] = self._status()
        return vm

    def update_virtual_machine(self, namespace, vm):
        name = vm["metadata"]["name"]
        self.calls.append(("update", namespace, name, vm["metadata"].get("resourceVersion")))
        self._maybe_fail("update")
        current = self.vms.get((namespace, name))
        if current is None:
            raise VMNotFound(name, namespace)
        if current["metadata"]["resourceVersion"] != vm["metadata"].get("resourceVersion"):
            raise RemoteFailure(ApiException(status=409, reason="Conflict"))
        stored = copy.deepcopy(vm)
        stored["metadata"]["resourceVersion"] = str(int(current["metadata"]["resourceVersion"]) + 1)
        stored["status"] = self._status()
        self.vms[(namespace, name)] = stored
        return copy.deepcopy(stored)

    def delete_virtual_machine(self, namespace, name, grace_period_seconds=None):
        self.calls.append(("delete", namespace, name, grace_period_seconds))
        self._maybe_fail("delete")
        if self.vms.pop((namespace, name), None) is None:
            raise VMNotFound(name, namespace)


class FakeMachineClient:
    """Records the patches a MachineScope writes back."""

    def __init__(self):
        self.patches = []
        self.status_patches = []
        self.fail_with = None

    def patch_machine(self, name, namespace, body):
        if self.fail_with is not None:
            raise self.fail_with
        self.patches.append((name, namespace, body))
        return body

    def patch_machine_status(self, name, namespace, status):
        if self.fail_with is not None:
            raise self.fail_with
        self.status_patches.append((name, namespace, status))
        return status

    def user_data_secret(self, name, namespace):
        raise AssertionError("credentials are resolved by the fake client builder")

    @property
    def patch_count(self):
        return len(self.status_patches)

    @property
    def last_provider_status(self):
        return self.status_patches[-1][2]["providerStatus"]


@pytest.fixture
def new_machine():
    return make_machine


@pytest.fixture
def kubevirt():
    return FakeKubevirtClient()


@pytest.fixture
def machine_client():
    return FakeMachineClient()


@pytest.fixture
def policy():
    return RequeuePolicy(short_delay=1, long_delay=5, update_grace=30, delete_grace_period=10)


@pytest.fixture
def reconciler(machine_client, kubevirt, policy):
    return Reconciler(machine_client, client_builder=lambda mc, secret, ns: kubevirt, policy=policy)


@pytest.fixture
def now_iso():
    return datetime.now(UTC).isoformat()
