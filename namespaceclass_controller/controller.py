"""Main controller logic for the NamespaceClass Controller."""

import logging
import threading
import time
from typing import List, Optional

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from .config import (
    CLASS_LABEL,
    MAX_CONCURRENT_RECONCILES,
    RESYNC_INTERVAL_SECONDS,
    WATCH_RETRY_DELAY_SECONDS,
    WATCH_TIMEOUT_SECONDS,
)
from .crd_client import NamespaceClassClient
from .exceptions import ReconcileCancelled
from .mapper import map_class_to_requests
from .namespace_class import NamespaceIndex
from .reconciler import NamespaceReconciler
from .workqueue import RateLimitingQueue

logger = logging.getLogger(__name__)


class NamespaceClassController:
    """
    Watches Namespaces and NamespaceClass objects and reconciles each
    labeled namespace to the resources of its class.
    """

    def __init__(
        self,
        dry_run: bool = False,
        workers: int = MAX_CONCURRENT_RECONCILES,
        resync_interval: float = RESYNC_INTERVAL_SECONDS,
        core_api: Optional[client.CoreV1Api] = None,
        class_client: Optional[NamespaceClassClient] = None,
        reconciler: Optional[NamespaceReconciler] = None
    ):
        """
        Initialize the controller.

        Args:
            dry_run: If True, don't make actual changes
            workers: Number of concurrent reconciliations
            resync_interval: Seconds between full resyncs
        """
        self.dry_run = dry_run
        self.workers = max(1, workers)
        self.resync_interval = resync_interval
        self.v1 = core_api or client.CoreV1Api()

        self.class_client = class_client or NamespaceClassClient()
        self.reconciler = reconciler or NamespaceReconciler(
            core_api=self.v1,
            class_client=self.class_client,
            dry_run=dry_run
        )
        self.index = NamespaceIndex()
        self.queue = RateLimitingQueue()

        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

    def enqueue_labeled_namespaces(self) -> int:
        """
        List all namespaces, rebuild the label index and queue every
        namespace that carries a class label.

        Returns:
            Number of namespaces queued
        """
        namespaces = self.v1.list_namespace().items
        self.index.replace_all(namespaces)

        count = 0
        for ns in namespaces:
            if (ns.metadata.labels or {}).get(CLASS_LABEL):
                self.queue.add(ns.metadata.name)
                count += 1

        logger.info(f"Queued {count} labeled namespace(s)")
        return count

    def handle_namespace_event(self, event_type: str, namespace) -> None:
        """
        Handle a namespace watch event.

        Args:
            event_type: ADDED, MODIFIED, or DELETED
            namespace: The V1Namespace from the event
        """
        name = namespace.metadata.name

        if event_type == "DELETED":
            self.index.remove(name)
            return

        labels = namespace.metadata.labels or {}
        self.index.upsert(name, labels)

        if labels.get(CLASS_LABEL):
            logger.debug(f"Namespace {event_type}: {name}")
            self.queue.add(name)

    def handle_class_event(self, event_type: str, class_obj: dict) -> List[str]:
        """
        Handle a NamespaceClass watch event by queuing the namespaces using it.

        Returns:
            Names of the namespaces queued
        """
        name = (class_obj.get("metadata") or {}).get("name", "")
        requests = map_class_to_requests(name, self.v1, self.index)

        logger.info(f"NamespaceClass {event_type}: {name}, {len(requests)} namespace(s) to reconcile")
        for namespace in requests:
            self.queue.add(namespace)
        return requests

    def process_next_item(self) -> bool:
        """
        Reconcile the next queued namespace.

        Returns:
            False once the queue has shut down
        """
        key = self.queue.get()
        if key is None:
            return False

        try:
            self.reconciler.reconcile(key, self._stop_event)
        except ReconcileCancelled as e:
            logger.info(f"{e}")
        except Exception as e:
            delay = self.queue.add_rate_limited(key)
            logger.error(f"Error reconciling namespace {key}: {e} (retry in {delay:.1f}s)")
        else:
            self.queue.forget(key)
        finally:
            self.queue.done(key)

        return True

    def run_worker(self) -> None:
        """Process queued namespaces until the queue shuts down."""
        while self.process_next_item():
            pass

    def watch_namespaces(self) -> None:
        """Watch for Namespace events in a loop."""
        logger.info("Starting namespace watcher...")
        w = watch.Watch()

        while not self._stop_event.is_set():
            try:
                for event in w.stream(self.v1.list_namespace, timeout_seconds=WATCH_TIMEOUT_SECONDS):
                    if self._stop_event.is_set():
                        break
                    self.handle_namespace_event(event["type"], event["object"])

            except ApiException as e:
                logger.error(f"Namespace watch error: {e}")
                self._stop_event.wait(WATCH_RETRY_DELAY_SECONDS)
            except Exception as e:
                logger.error(f"Unexpected error in namespace watcher: {e}")
                self._stop_event.wait(WATCH_RETRY_DELAY_SECONDS)

    def watch_classes(self) -> None:
        """Watch for NamespaceClass events in a loop."""
        logger.info("Starting namespace class watcher...")

        while not self._stop_event.is_set():
            try:
                for event in self.class_client.watch_classes(timeout=WATCH_TIMEOUT_SECONDS):
                    if self._stop_event.is_set():
                        break
                    self.handle_class_event(event["type"], event["object"])

            except ApiException as e:
                logger.error(f"Namespace class watch error: {e}")
                self._stop_event.wait(WATCH_RETRY_DELAY_SECONDS)
            except Exception as e:
                logger.error(f"Unexpected error in namespace class watcher: {e}")
                self._stop_event.wait(WATCH_RETRY_DELAY_SECONDS)

    def periodic_resync(self) -> None:
        """Periodically queue every labeled namespace."""
        logger.info(f"Starting periodic resync (interval: {self.resync_interval}s)")

        while not self._stop_event.wait(self.resync_interval):
            logger.debug("Running periodic resync...")
            try:
                self.enqueue_labeled_namespaces()
            except ApiException as e:
                logger.error(f"Resync failed: {e}")
            except Exception as e:
                logger.error(f"Unexpected error in periodic resync: {e}")

    def start(self) -> None:
        """Load current state and start watcher and worker threads."""
        logger.info("=" * 60)
        logger.info("Starting NamespaceClass Controller")
        logger.info("=" * 60)
        logger.info(f"Workers: {self.workers}")
        logger.info(f"Dry run: {self.dry_run}")

        self.enqueue_labeled_namespaces()

        targets = [
            (self.watch_namespaces, "namespace-watcher"),
            (self.watch_classes, "class-watcher"),
            (self.periodic_resync, "periodic-resync"),
        ]
        targets += [(self.run_worker, f"worker-{i}") for i in range(self.workers)]

        for target, name in targets:
            thread = threading.Thread(target=target, name=name, daemon=True)
            thread.start()
            self._threads.append(thread)

    def run(self) -> None:
        """Run the controller until interrupted."""
        self.start()
        logger.info("Controller is running. Press Ctrl+C to stop.")

        # Keep main thread alive
        try:
            while not self._stop_event.is_set():
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Shutdown requested...")
            self.stop()

    def stop(self) -> None:
        """Stop the controller."""
        logger.info("Stopping controller...")
        self._stop_event.set()
        self.queue.shutdown()
