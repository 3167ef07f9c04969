"""Reconciliation logic for the NamespaceClass Controller."""

import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Set, Tuple

from kubernetes import client
from kubernetes.client.rest import ApiException

from .config import CLASS_LABEL, LAST_CLASS_ANNOTATION, CONFLICT_RETRY_LIMIT
from .crd_client import NamespaceClassClient
from .exceptions import ConflictError, ReconcileCancelled
from .namespace_class import NamespaceClass, ResourceStatus, ledger_append, ledger_remove
from .resource_client import ResourceClient
from .utils import (
    ManagedObject,
    decode_manifests,
    format_object_ref,
    identities,
    validate_unique_identities,
)

logger = logging.getLogger(__name__)

LedgerMutation = Callable[[List[ResourceStatus]], List[ResourceStatus]]


@dataclass
class ReconcileResult:
    """What a single reconciliation pass did."""
    namespace: str
    class_name: str = ""
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)


class NamespaceReconciler:
    """Reconciles a namespace to the resources of its NamespaceClass."""

    def __init__(
        self,
        core_api: Optional[client.CoreV1Api] = None,
        class_client: Optional[NamespaceClassClient] = None,
        resource_client: Optional[ResourceClient] = None,
        dry_run: bool = False
    ):
        """
        Initialize the reconciler.

        Args:
            core_api: API used for namespaces
            class_client: Client for NamespaceClass objects
            resource_client: Client for the managed resources
            dry_run: If True, don't make actual changes
        """
        self.core_api = core_api or client.CoreV1Api()
        self.class_client = class_client or NamespaceClassClient()
        self.resource_client = resource_client or ResourceClient()
        self.dry_run = dry_run

    def reconcile(self, name: str, stop_event: Optional[threading.Event] = None) -> ReconcileResult:
        """
        Converge one namespace with its class.

        Args:
            name: Namespace name
            stop_event: Cancellation token; the pass aborts with
                ReconcileCancelled once it is set

        Returns:
            ReconcileResult describing the changes made

        Raises:
            DecodeError: If a manifest of the class cannot be decoded
            ConflictError: If a write kept conflicting after retries
            ReconcileCancelled: If ``stop_event`` fired mid-pass
        """
        result = ReconcileResult(namespace=name)

        self._check_cancelled(stop_event, name)
        namespace = self._fetch_namespace(name)
        if namespace is None:
            logger.info(f"Namespace {name} not found")
            return result

        class_name = (namespace.metadata.labels or {}).get(CLASS_LABEL)
        if not class_name:
            logger.debug(f"Namespace {name} does not have a class label")
            return result

        self._check_cancelled(stop_event, name)
        namespace_class = self.class_client.get_class(class_name)
        if namespace_class is None:
            logger.info(f"NamespaceClass {class_name} not found for namespace {name}")
            return result
        result.class_name = class_name

        # Decode everything before the first write so a bad manifest applies nothing
        objects = decode_manifests(namespace_class.resources, class_name)
        validate_unique_identities(objects, class_name)

        namespace_class = self._apply_resources(name, namespace_class, objects, result, stop_event)
        self._handle_class_change(namespace, namespace_class, objects, result, stop_event)
        self._sweep_orphans(name, namespace_class, objects, result, stop_event)

        logger.info(
            f"Reconciled namespace {name} with class {class_name}: "
            f"{len(result.created)} created, {len(result.updated)} updated, "
            f"{len(result.deleted)} deleted"
        )
        return result

    def _fetch_namespace(self, name: str) -> Optional[client.V1Namespace]:
        try:
            return self.core_api.read_namespace(name=name)
        except ApiException as e:
            if e.status == 404:
                return None
            logger.error(f"Failed to get namespace {name}: {e}")
            raise

    def _check_cancelled(self, stop_event: Optional[threading.Event], name: str) -> None:
        if stop_event is not None and stop_event.is_set():
            raise ReconcileCancelled(f"reconciliation of {name} cancelled")

    def _apply_resources(
        self,
        namespace: str,
        namespace_class: NamespaceClass,
        objects: List[ManagedObject],
        result: ReconcileResult,
        stop_event: Optional[threading.Event]
    ) -> NamespaceClass:
        """
        Create or replace every declared resource inside the namespace.

        Returns:
            The class with its ledger as last persisted
        """
        for desired in objects:
            obj = desired.with_namespace(namespace)

            self._check_cancelled(stop_event, namespace)
            live = self.resource_client.get(obj)

            self._check_cancelled(stop_event, namespace)
            if live is None:
                if self.dry_run:
                    logger.info(f"[DRY-RUN] Would create resource {obj}")
                else:
                    self.resource_client.create(obj)
                    logger.info(f"Created resource {obj}")
                result.created.append(str(obj))
            else:
                resource_version = (live.get("metadata") or {}).get("resourceVersion", "")
                if self.dry_run:
                    logger.info(f"[DRY-RUN] Would update resource {obj}")
                else:
                    self.resource_client.replace(obj, resource_version)
                    logger.info(f"Updated resource {obj}")
                result.updated.append(str(obj))

            entry = ResourceStatus.from_object(obj)
            namespace_class = self._mutate_ledger(
                namespace_class,
                lambda entries, entry=entry: ledger_append(entries, entry),
                stop_event
            )

        return namespace_class

    def _mutate_ledger(
        self,
        namespace_class: NamespaceClass,
        mutate: LedgerMutation,
        stop_event: Optional[threading.Event]
    ) -> NamespaceClass:
        """
        Apply an idempotent ledger change and persist it.

        On a write conflict the class is re-read and the same change is
        applied to the fresh ledger.
        """
        current = namespace_class
        for attempt in range(1, CONFLICT_RETRY_LIMIT + 1):
            entries = mutate(current.status_resources)
            if entries == current.status_resources:
                return current

            updated = dataclasses.replace(current, status_resources=entries)
            if self.dry_run:
                return updated

            try:
                return self.class_client.update_status(updated)
            except ConflictError as e:
                if attempt == CONFLICT_RETRY_LIMIT:
                    logger.error(f"Giving up on status of namespace class {current.name}: {e}")
                    raise
                logger.info(f"Conflict updating status of namespace class {current.name}, retrying")

            self._check_cancelled(stop_event, f"namespace class {current.name}")
            fresh = self.class_client.get_class(current.name)
            if fresh is None:
                raise ConflictError(f"namespace class {current.name} was deleted")
            current = fresh

        return current

    def _handle_class_change(
        self,
        namespace: client.V1Namespace,
        namespace_class: NamespaceClass,
        objects: List[ManagedObject],
        result: ReconcileResult,
        stop_event: Optional[threading.Event]
    ) -> None:
        """Tear down the previous class's resources and record the current class."""
        name = namespace.metadata.name
        last_name = (namespace.metadata.annotations or {}).get(LAST_CLASS_ANNOTATION)

        if not last_name:
            logger.info(f"Namespace {name} gets its first class {namespace_class.name}")
        elif last_name == namespace_class.name:
            return
        else:
            logger.info(f"Namespace class of {name} has changed from {last_name} to {namespace_class.name}")
            self._teardown_previous_class(name, last_name, identities(objects), result, stop_event)

        # Deletions above complete before the annotation moves forward
        self._persist_last_class(namespace, namespace_class.name, stop_event)

    def _teardown_previous_class(
        self,
        namespace: str,
        last_name: str,
        current_identities: Set[Tuple[str, str]],
        result: ReconcileResult,
        stop_event: Optional[threading.Event]
    ) -> None:
        self._check_cancelled(stop_event, namespace)
        previous = self.class_client.get_class(last_name)
        if previous is None:
            logger.info(f"Previous NamespaceClass {last_name} not found, nothing to tear down")
            return

        for obj in decode_manifests(previous.resources, last_name):
            if obj.identity in current_identities:
                continue
            self._delete(obj.api_version, obj.kind, obj.name, namespace, result, stop_event)

    def _persist_last_class(
        self,
        namespace: client.V1Namespace,
        class_name: str,
        stop_event: Optional[threading.Event]
    ) -> None:
        name = namespace.metadata.name

        for attempt in range(1, CONFLICT_RETRY_LIMIT + 1):
            annotations = dict(namespace.metadata.annotations or {})
            annotations[LAST_CLASS_ANNOTATION] = class_name
            namespace.metadata.annotations = annotations

            if self.dry_run:
                logger.info(f"[DRY-RUN] Would annotate namespace {name} with class {class_name}")
                return

            self._check_cancelled(stop_event, name)
            try:
                self.core_api.replace_namespace(name=name, body=namespace)
                logger.debug(f"Annotated namespace {name} with class {class_name}")
                return
            except ApiException as e:
                if e.status != 409:
                    logger.error(f"Failed to update namespace {name}: {e}")
                    raise
                if attempt == CONFLICT_RETRY_LIMIT:
                    logger.error(f"Giving up on updating namespace {name}: {e}")
                    raise ConflictError(f"namespace {name} was modified") from e
                logger.info(f"Conflict updating namespace {name}, retrying")

            namespace = self._fetch_namespace(name)
            if namespace is None:
                logger.info(f"Namespace {name} disappeared before it could be annotated")
                return
            if (namespace.metadata.labels or {}).get(CLASS_LABEL) != class_name:
                # a newer pass owns the namespace now
                logger.info(f"Class label of namespace {name} changed, skipping annotation")
                return

    def _sweep_orphans(
        self,
        namespace: str,
        namespace_class: NamespaceClass,
        objects: List[ManagedObject],
        result: ReconcileResult,
        stop_event: Optional[threading.Event]
    ) -> NamespaceClass:
        """Delete and untrack ledger entries the class no longer declares."""
        declared = identities(objects)

        for entry in list(namespace_class.status_resources):
            if entry.identity in declared:
                continue

            self._delete(entry.api_version, entry.kind, entry.name, namespace, result, stop_event)
            if self.dry_run:
                continue
            namespace_class = self._mutate_ledger(
                namespace_class,
                lambda entries, entry=entry: ledger_remove(entries, entry),
                stop_event
            )

        return namespace_class

    def _delete(
        self,
        api_version: str,
        kind: str,
        name: str,
        namespace: str,
        result: ReconcileResult,
        stop_event: Optional[threading.Event]
    ) -> None:
        ref = format_object_ref(api_version, kind, name, namespace)
        self._check_cancelled(stop_event, namespace)

        if self.dry_run:
            logger.info(f"[DRY-RUN] Would delete resource {ref}")
            result.deleted.append(ref)
            return

        if self.resource_client.delete(api_version, kind, name, namespace):
            logger.info(f"Deleted resource {ref}")
            result.deleted.append(ref)
