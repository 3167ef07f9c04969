"""Maps NamespaceClass events to the namespaces that must be reconciled."""

import logging
from typing import List, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from .config import CLASS_LABEL
from .namespace_class import NamespaceIndex

logger = logging.getLogger(__name__)


def map_class_to_requests(
    class_name: str,
    core_api: client.CoreV1Api,
    index: Optional[NamespaceIndex] = None
) -> List[str]:
    """
    Find the namespaces labeled with a NamespaceClass.

    A synced index answers directly. Otherwise namespaces are listed; a
    failed list yields no requests, leaving the namespaces to the next
    namespace event or resync.

    Args:
        class_name: Name of the changed class
        core_api: API used to list namespaces
        index: Optional namespace label index

    Returns:
        Names of the namespaces to reconcile
    """
    if not class_name:
        return []

    if index is not None and index.synced:
        return index.namespaces_for(class_name)

    try:
        namespaces = core_api.list_namespace(label_selector=f"{CLASS_LABEL}={class_name}")
    except ApiException as e:
        logger.error(f"Failed to list namespaces for class {class_name}: {e}")
        return []
    except Exception as e:
        logger.error(f"Unexpected error listing namespaces for class {class_name}: {e}")
        return []

    return [
        ns.metadata.name
        for ns in namespaces.items
        if (ns.metadata.labels or {}).get(CLASS_LABEL) == class_name
    ]
