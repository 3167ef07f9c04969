"""Shared fixtures for NamespaceClass Controller tests.

Provides in-memory stand-ins for the three API surfaces the reconciler
talks to (namespaces, NamespaceClass objects and managed resources) so
the reconciliation pass can be exercised without a cluster.
"""

import copy
import dataclasses
from typing import Any, Dict, List, Optional, Tuple

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from namespaceclass_controller.config import CLASS_LABEL, LAST_CLASS_ANNOTATION
from namespaceclass_controller.exceptions import ConflictError
from namespaceclass_controller.namespace_class import NamespaceClass, ResourceStatus
from namespaceclass_controller.reconciler import NamespaceReconciler
from namespaceclass_controller.utils import ManagedObject, format_object_ref


# ---------------------------------------------------------------------------
# Manifest helpers
# ---------------------------------------------------------------------------


def manifest(kind: str, name: str, api_version: str = "v1", **extra: Any) -> Dict[str, Any]:
    body = {"apiVersion": api_version, "kind": kind, "metadata": {"name": name}}
    body.update(extra)
    return body


def config_map(name: str = "settings", **data: str) -> Dict[str, Any]:
    return manifest("ConfigMap", name, data=data or {"key": "value"})


def secret(name: str = "credentials") -> Dict[str, Any]:
    return manifest("Secret", name, stringData={"token": "s3cr3t"})


def service_account(name: str = "deployer") -> Dict[str, Any]:
    return manifest("ServiceAccount", name)


def network_policy(name: str = "deny-all") -> Dict[str, Any]:
    return manifest(
        "NetworkPolicy",
        name,
        api_version="networking.k8s.io/v1",
        spec={"podSelector": {}, "policyTypes": ["Ingress"]},
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeCoreV1Api:
    """Namespace subset of CoreV1Api with resourceVersion checks."""

    def __init__(self):
        self.namespaces: Dict[str, Dict[str, Any]] = {}
        self.replace_calls = 0
        self.list_calls = 0
        self.conflicts = 0
        self.list_error: Optional[Exception] = None

    def add_namespace(
        self,
        name: str,
        class_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> None:
        labels = {CLASS_LABEL: class_name} if class_name else {}
        annotations = {LAST_CLASS_ANNOTATION: last_name} if last_name else {}
        self.namespaces[name] = {"labels": labels, "annotations": annotations, "rv": 1}

    def set_class(self, name: str, class_name: str) -> None:
        self.namespaces[name]["labels"][CLASS_LABEL] = class_name
        self.namespaces[name]["rv"] += 1

    def annotation(self, name: str) -> Optional[str]:
        return self.namespaces[name]["annotations"].get(LAST_CLASS_ANNOTATION)

    def _build(self, name: str) -> client.V1Namespace:
        record = self.namespaces[name]
        return client.V1Namespace(
            metadata=client.V1ObjectMeta(
                name=name,
                labels=dict(record["labels"]),
                annotations=dict(record["annotations"]) or None,
                resource_version=str(record["rv"]),
            )
        )

    def read_namespace(self, name: str, **kwargs) -> client.V1Namespace:
        if name not in self.namespaces:
            raise ApiException(status=404, reason="Not Found")
        return self._build(name)

    def replace_namespace(self, name: str, body: client.V1Namespace, **kwargs) -> client.V1Namespace:
        self.replace_calls += 1
        record = self.namespaces.get(name)
        if record is None:
            raise ApiException(status=404, reason="Not Found")
        if self.conflicts > 0:
            self.conflicts -= 1
            record["rv"] += 1
            raise ApiException(status=409, reason="Conflict")
        if body.metadata.resource_version != str(record["rv"]):
            raise ApiException(status=409, reason="Conflict")
        record["labels"] = dict(body.metadata.labels or {})
        record["annotations"] = dict(body.metadata.annotations or {})
        record["rv"] += 1
        return self._build(name)

    def list_namespace(self, label_selector: Optional[str] = None, **kwargs) -> client.V1NamespaceList:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        items = [self._build(name) for name in sorted(self.namespaces)]
        if label_selector:
            key, value = label_selector.split("=", 1)
            items = [ns for ns in items if (ns.metadata.labels or {}).get(key) == value]
        return client.V1NamespaceList(items=items)


class FakeClassClient:
    """NamespaceClassClient backed by a dict, with optimistic concurrency."""

    def __init__(self):
        self.classes: Dict[str, NamespaceClass] = {}
        self.status_updates: List[List[ResourceStatus]] = []
        self.concurrent_entries: List[ResourceStatus] = []
        self.always_conflict = False

    def add(self, name: str, resources: List[Any], status: Optional[List[ResourceStatus]] = None) -> None:
        self.classes[name] = NamespaceClass(
            name=name,
            resource_version="1",
            resources=copy.deepcopy(resources),
            status_resources=list(status or []),
        )

    def set_resources(self, name: str, resources: List[Any]) -> None:
        stored = self.classes[name]
        self.classes[name] = dataclasses.replace(
            stored,
            resources=copy.deepcopy(resources),
            resource_version=str(int(stored.resource_version) + 1),
        )

    def ledger(self, name: str) -> List[ResourceStatus]:
        return list(self.classes[name].status_resources)

    def get_class(self, name: str) -> Optional[NamespaceClass]:
        stored = self.classes.get(name)
        return copy.deepcopy(stored) if stored is not None else None

    def update_status(self, namespace_class: NamespaceClass) -> NamespaceClass:
        stored = self.classes[namespace_class.name]

        if self.concurrent_entries:
            # another namespace sharing the class writes first
            entry = self.concurrent_entries.pop(0)
            stored = dataclasses.replace(
                stored,
                status_resources=stored.status_resources + [entry],
                resource_version=str(int(stored.resource_version) + 1),
            )
            self.classes[stored.name] = stored

        if self.always_conflict or namespace_class.resource_version != stored.resource_version:
            raise ConflictError(f"namespace class {namespace_class.name} was modified")

        updated = dataclasses.replace(
            stored,
            status_resources=list(namespace_class.status_resources),
            resource_version=str(int(stored.resource_version) + 1),
        )
        self.classes[updated.name] = updated
        self.status_updates.append(list(updated.status_resources))
        return copy.deepcopy(updated)


class FakeResourceClient:
    """ResourceClient keyed by (apiVersion, kind, namespace, name)."""

    def __init__(self):
        self.objects: Dict[Tuple[str, str, str, str], Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.replaced_versions: List[str] = []
        self.errors: Dict[str, Exception] = {}
        self.after_create = None
        self._rv = 0

    @staticmethod
    def _key(api_version: str, kind: str, name: str, namespace: str) -> Tuple[str, str, str, str]:
        return (api_version, kind, namespace, name)

    def _next_rv(self) -> str:
        self._rv += 1
        return str(self._rv)

    def _store(self, obj: ManagedObject) -> Dict[str, Any]:
        body = copy.deepcopy(obj.body)
        body["metadata"]["resourceVersion"] = self._next_rv()
        self.objects[self._key(obj.api_version, obj.kind, obj.name, obj.namespace)] = body
        return copy.deepcopy(body)

    def seed(self, namespace: str, body: Dict[str, Any]) -> None:
        body = copy.deepcopy(body)
        body["metadata"]["namespace"] = namespace
        body["metadata"]["resourceVersion"] = self._next_rv()
        key = self._key(body["apiVersion"], body["kind"], body["metadata"]["name"], namespace)
        self.objects[key] = body

    def live(self, namespace: str, kind: str, name: str, api_version: str = "v1") -> Optional[Dict[str, Any]]:
        return self.objects.get(self._key(api_version, kind, name, namespace))

    def kinds_in(self, namespace: str) -> set:
        return {(key[0], key[1]) for key in self.objects if key[2] == namespace}

    def mutating_calls(self) -> List[Tuple[str, str]]:
        return [call for call in self.calls if call[0] != "get"]

    def _maybe_fail(self, op: str) -> None:
        if op in self.errors:
            raise self.errors[op]

    def get(self, obj: ManagedObject) -> Optional[Dict[str, Any]]:
        self.calls.append(("get", str(obj)))
        self._maybe_fail("get")
        found = self.objects.get(self._key(obj.api_version, obj.kind, obj.name, obj.namespace))
        return copy.deepcopy(found) if found is not None else None

    def create(self, obj: ManagedObject) -> Dict[str, Any]:
        self.calls.append(("create", str(obj)))
        self._maybe_fail("create")
        created = self._store(obj)
        if self.after_create is not None:
            self.after_create(obj)
        return created

    def replace(self, obj: ManagedObject, resource_version: str = "") -> Dict[str, Any]:
        self.calls.append(("replace", str(obj)))
        self._maybe_fail("replace")
        self.replaced_versions.append(resource_version)
        return self._store(obj)

    def delete(self, api_version: str, kind: str, name: str, namespace: str) -> bool:
        self.calls.append(("delete", format_object_ref(api_version, kind, name, namespace)))
        self._maybe_fail("delete")
        return self.objects.pop(self._key(api_version, kind, name, namespace), None) is not None


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def core_api() -> FakeCoreV1Api:
    return FakeCoreV1Api()


@pytest.fixture
def class_client() -> FakeClassClient:
    return FakeClassClient()


@pytest.fixture
def resource_client() -> FakeResourceClient:
    return FakeResourceClient()


@pytest.fixture
def reconciler(core_api, class_client, resource_client) -> NamespaceReconciler:
    return NamespaceReconciler(
        core_api=core_api,
        class_client=class_client,
        resource_client=resource_client,
    )
