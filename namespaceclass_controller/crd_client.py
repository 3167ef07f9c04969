"""Client for interacting with the NamespaceClass CRD."""

import logging
from typing import Optional

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from .config import CRD_GROUP, CRD_VERSION, CRD_PLURAL
from .exceptions import ConflictError
from .namespace_class import NamespaceClass

logger = logging.getLogger(__name__)


class NamespaceClassClient:
    """Client for cluster-scoped NamespaceClass custom resources."""

    def __init__(self, custom_api: Optional[client.CustomObjectsApi] = None):
        """Initialize the CRD client."""
        self.custom_api = custom_api or client.CustomObjectsApi()

    def get_class(self, name: str) -> Optional[NamespaceClass]:
        """
        Get a NamespaceClass by name.

        Args:
            name: Class name

        Returns:
            The parsed NamespaceClass or None if not found
        """
        try:
            obj = self.custom_api.get_cluster_custom_object(
                group=CRD_GROUP,
                version=CRD_VERSION,
                plural=CRD_PLURAL,
                name=name
            )
        except ApiException as e:
            if e.status == 404:
                return None
            logger.error(f"Error getting namespace class {name}: {e}")
            raise
        return NamespaceClass.from_crd(obj)

    def update_status(self, namespace_class: NamespaceClass) -> NamespaceClass:
        """
        Replace the status subresource of a NamespaceClass.

        The write carries the class's resourceVersion, so it only succeeds
        against the version that was read.

        Args:
            namespace_class: Class whose status_resources should be persisted

        Returns:
            The class as stored by the server (with its new resourceVersion)

        Raises:
            ConflictError: If the class changed since it was read
        """
        try:
            obj = self.custom_api.replace_cluster_custom_object_status(
                group=CRD_GROUP,
                version=CRD_VERSION,
                plural=CRD_PLURAL,
                name=namespace_class.name,
                body=namespace_class.status_body()
            )
        except ApiException as e:
            if e.status == 409:
                raise ConflictError(
                    f"namespace class {namespace_class.name} was modified "
                    f"(resourceVersion {namespace_class.resource_version})"
                ) from e
            logger.error(f"Error updating status of namespace class {namespace_class.name}: {e}")
            raise

        logger.debug(
            f"Updated status for namespace class {namespace_class.name}: "
            f"{len(namespace_class.status_resources)} resource(s)"
        )
        return NamespaceClass.from_crd(obj)

    def watch_classes(self, timeout: int = 300):
        """
        Create a watch stream for NamespaceClass objects.

        Args:
            timeout: Watch timeout in seconds

        Yields:
            Watch events
        """
        w = watch.Watch()

        try:
            stream = w.stream(
                self.custom_api.list_cluster_custom_object,
                group=CRD_GROUP,
                version=CRD_VERSION,
                plural=CRD_PLURAL,
                timeout_seconds=timeout
            )

            for event in stream:
                yield event

        except ApiException as e:
            logger.error(f"Watch error: {e}")
            raise
