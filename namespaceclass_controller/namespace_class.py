"""NamespaceClass model, status ledger helpers and namespace label index."""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from .config import CLASS_LABEL, CRD_GROUP, CRD_KIND, CRD_VERSION
from .utils import ManagedObject

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceStatus:
    """One ledger entry: a resource materialized on behalf of a class."""
    kind: str
    name: str
    api_version: str

    @classmethod
    def from_dict(cls, entry: Dict[str, Any]) -> "ResourceStatus":
        """Create a ResourceStatus from its wire form."""
        return cls(
            kind=entry.get("kind", ""),
            name=entry.get("name", ""),
            api_version=entry.get("apiVersion", "")
        )

    @classmethod
    def from_object(cls, obj: ManagedObject) -> "ResourceStatus":
        return cls(kind=obj.kind, name=obj.name, api_version=obj.api_version)

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "name": self.name, "apiVersion": self.api_version}

    @property
    def identity(self) -> tuple:
        return (self.api_version, self.kind)


@dataclass
class NamespaceClass:
    """Parsed NamespaceClass object."""
    name: str
    resource_version: str = ""
    resources: List[Any] = field(default_factory=list)
    status_resources: List[ResourceStatus] = field(default_factory=list)

    @classmethod
    def from_crd(cls, crd_object: Dict[str, Any]) -> "NamespaceClass":
        """Create NamespaceClass from CRD object."""
        metadata = crd_object.get("metadata") or {}
        spec = crd_object.get("spec") or {}
        status = crd_object.get("status") or {}

        return cls(
            name=metadata.get("name", ""),
            resource_version=metadata.get("resourceVersion", ""),
            resources=list(spec.get("resources") or []),
            status_resources=[
                ResourceStatus.from_dict(entry) for entry in status.get("resources") or []
            ]
        )

    def status_body(self) -> Dict[str, Any]:
        """Build the body for a status subresource replace."""
        return {
            "apiVersion": f"{CRD_GROUP}/{CRD_VERSION}",
            "kind": CRD_KIND,
            "metadata": {"name": self.name, "resourceVersion": self.resource_version},
            "status": {"resources": [entry.to_dict() for entry in self.status_resources]}
        }


def ledger_contains(entries: Iterable[ResourceStatus], entry: ResourceStatus) -> bool:
    """Check whether the ledger has an entry with the same kind, name and apiVersion."""
    return any(existing == entry for existing in entries)


def ledger_append(entries: List[ResourceStatus], entry: ResourceStatus) -> List[ResourceStatus]:
    """Return a new ledger with ``entry`` appended unless already present."""
    if ledger_contains(entries, entry):
        return list(entries)
    return list(entries) + [entry]


def ledger_remove(entries: List[ResourceStatus], entry: ResourceStatus) -> List[ResourceStatus]:
    """Return a new ledger without ``entry``."""
    return [existing for existing in entries if existing != entry]


class NamespaceIndex:
    """
    Thread-safe reverse lookup from class name to the namespaces labeled
    with it, maintained from the namespace watch stream.
    """

    def __init__(self):
        """Initialize the index."""
        self._by_class: Dict[str, Set[str]] = {}
        self._class_of: Dict[str, str] = {}
        self._lock = threading.RLock()
        self._synced = False

    @property
    def synced(self) -> bool:
        """True once the index has been filled from a full namespace list."""
        with self._lock:
            return self._synced

    def upsert(self, namespace: str, labels: Optional[Dict[str, str]]) -> None:
        """
        Record the class label of a namespace.

        Args:
            namespace: Namespace name
            labels: The namespace's current labels
        """
        class_name = (labels or {}).get(CLASS_LABEL)

        with self._lock:
            previous = self._class_of.get(namespace)
            if previous == class_name:
                return
            self._discard(namespace)
            if class_name:
                self._class_of[namespace] = class_name
                self._by_class.setdefault(class_name, set()).add(namespace)
            logger.debug(f"Indexed namespace {namespace}: {previous} -> {class_name}")

    def remove(self, namespace: str) -> None:
        """Forget a deleted namespace."""
        with self._lock:
            self._discard(namespace)

    def replace_all(self, namespaces: Iterable[Any]) -> None:
        """
        Rebuild the index from a full namespace list and mark it synced.

        Args:
            namespaces: V1Namespace objects
        """
        with self._lock:
            self._by_class.clear()
            self._class_of.clear()
            for ns in namespaces:
                self.upsert(ns.metadata.name, ns.metadata.labels)
            self._synced = True
            logger.info(f"Namespace index synced: {len(self._class_of)} labeled namespace(s)")

    def namespaces_for(self, class_name: str) -> List[str]:
        """
        Get the namespaces labeled with a class.

        Returns:
            Sorted list of namespace names
        """
        with self._lock:
            return sorted(self._by_class.get(class_name, ()))

    def _discard(self, namespace: str) -> None:
        class_name = self._class_of.pop(namespace, None)
        if class_name is None:
            return
        members = self._by_class.get(class_name)
        if members is not None:
            members.discard(namespace)
            if not members:
                del self._by_class[class_name]
