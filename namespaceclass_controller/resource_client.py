"""Client for the arbitrary resources a NamespaceClass declares."""

import copy
import logging
from typing import Any, Dict, Optional

from kubernetes import client
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import (
    ConflictError as DynamicConflictError,
    NotFoundError,
    ResourceNotFoundError,
)

from .exceptions import ConflictError
from .utils import ManagedObject, format_object_ref

logger = logging.getLogger(__name__)


class ResourceClient:
    """Get, create, replace and delete objects of any kind by address."""

    def __init__(self, dynamic_client: Optional[DynamicClient] = None):
        """
        Initialize the resource client.

        Args:
            dynamic_client: Pre-built DynamicClient; one is created on first
                use otherwise (creation performs API discovery)
        """
        self._dynamic = dynamic_client

    @property
    def dynamic(self) -> DynamicClient:
        if self._dynamic is None:
            self._dynamic = DynamicClient(client.ApiClient())
        return self._dynamic

    def _api(self, api_version: str, kind: str):
        return self.dynamic.resources.get(api_version=api_version, kind=kind)

    def get(self, obj: ManagedObject) -> Optional[Dict[str, Any]]:
        """
        Get the live object at the address of ``obj``.

        Returns:
            The live object as a dict, or None if it does not exist
        """
        try:
            live = self._api(obj.api_version, obj.kind).get(name=obj.name, namespace=obj.namespace)
        except NotFoundError:
            return None
        except Exception as e:
            logger.error(f"Failed to get resource {obj}: {e}")
            raise
        return live.to_dict()

    def create(self, obj: ManagedObject) -> Dict[str, Any]:
        """Create ``obj`` in its namespace."""
        try:
            created = self._api(obj.api_version, obj.kind).create(body=obj.body, namespace=obj.namespace)
        except Exception as e:
            logger.error(f"Failed to create resource {obj}: {e}")
            raise
        return created.to_dict()

    def replace(self, obj: ManagedObject, resource_version: str = "") -> Dict[str, Any]:
        """
        Replace the live object wholesale with ``obj``.

        Args:
            obj: Desired object
            resource_version: resourceVersion of the live object; when set the
                replace only succeeds against that version

        Raises:
            ConflictError: If the live object changed since it was read
        """
        body = copy.deepcopy(obj.body)
        if resource_version:
            body.setdefault("metadata", {})["resourceVersion"] = resource_version

        try:
            replaced = self._api(obj.api_version, obj.kind).replace(
                body=body,
                name=obj.name,
                namespace=obj.namespace
            )
        except DynamicConflictError as e:
            raise ConflictError(f"resource {obj} was modified") from e
        except Exception as e:
            logger.error(f"Failed to update resource {obj}: {e}")
            raise
        return replaced.to_dict()

    def delete(self, api_version: str, kind: str, name: str, namespace: str) -> bool:
        """
        Delete an object by address.

        Returns:
            True if deleted, False if it was already absent
        """
        ref = format_object_ref(api_version, kind, name, namespace)
        try:
            self._api(api_version, kind).delete(name=name, namespace=namespace)
        except NotFoundError:
            logger.debug(f"Resource {ref} already absent")
            return False
        except ResourceNotFoundError:
            # kind no longer served, so no object of it can exist
            logger.debug(f"Kind {api_version}/{kind} not served, nothing to delete for {ref}")
            return False
        except Exception as e:
            logger.error(f"Failed to delete resource {ref}: {e}")
            raise
        return True
