"""Utility functions for decoding and addressing resource manifests."""

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .exceptions import DecodeError, DuplicateIdentityError

logger = logging.getLogger(__name__)

Manifest = Union[Dict[str, Any], str, bytes]


@dataclass
class ManagedObject:
    """A decoded manifest addressed by apiVersion, kind, name and namespace."""
    api_version: str
    kind: str
    name: str
    namespace: str = ""
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def identity(self) -> Tuple[str, str]:
        """The (apiVersion, kind) pair used for teardown and orphan matching."""
        return (self.api_version, self.kind)

    def with_namespace(self, namespace: str) -> "ManagedObject":
        """Return a copy of this object addressed into ``namespace``."""
        body = copy.deepcopy(self.body)
        body.setdefault("metadata", {})["namespace"] = namespace
        return ManagedObject(
            api_version=self.api_version,
            kind=self.kind,
            name=self.name,
            namespace=namespace,
            body=body
        )

    def __str__(self) -> str:
        return format_object_ref(self.api_version, self.kind, self.name, self.namespace)


def format_object_ref(api_version: str, kind: str, name: str, namespace: str = "") -> str:
    """
    Format an object address for log messages.

    Examples:
        ("v1", "ConfigMap", "cfg", "team-a") -> "v1/ConfigMap team-a/cfg"
        ("v1", "Namespace", "team-a") -> "v1/Namespace team-a"
    """
    if namespace:
        return f"{api_version}/{kind} {namespace}/{name}"
    return f"{api_version}/{kind} {name}"


def decode_manifest(manifest: Manifest, index: Optional[int] = None) -> ManagedObject:
    """
    Decode a manifest into an addressable ManagedObject.

    The input is never mutated; unknown fields are carried over verbatim.

    Args:
        manifest: An embedded object (dict) or its JSON encoding
        index: Position of the manifest in the class, for error messages

    Returns:
        The decoded ManagedObject

    Raises:
        DecodeError: If the manifest is not a JSON object or lacks
            apiVersion, kind or metadata.name
    """
    if isinstance(manifest, (str, bytes)):
        try:
            body = json.loads(manifest)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecodeError(f"invalid JSON: {e}", index) from e
    elif isinstance(manifest, dict):
        body = copy.deepcopy(manifest)
    else:
        raise DecodeError(f"unsupported manifest type {type(manifest).__name__}", index)

    if not isinstance(body, dict):
        raise DecodeError("manifest is not an object", index)

    api_version = body.get("apiVersion")
    kind = body.get("kind")
    if not api_version or not isinstance(api_version, str):
        raise DecodeError("missing apiVersion", index)
    if not kind or not isinstance(kind, str):
        raise DecodeError("missing kind", index)

    metadata = body.get("metadata")
    if not isinstance(metadata, dict) or not metadata.get("name"):
        raise DecodeError(f"{api_version}/{kind} is missing metadata.name", index)

    return ManagedObject(
        api_version=api_version,
        kind=kind,
        name=str(metadata["name"]),
        namespace=str(metadata.get("namespace") or ""),
        body=body
    )


def decode_manifests(manifests: Iterable[Manifest], class_name: str = "") -> List[ManagedObject]:
    """
    Decode every manifest of a class, preserving declaration order.

    Decoding stops at the first failure so that nothing from a class with a
    malformed manifest gets applied.
    """
    objects = []
    for index, manifest in enumerate(manifests):
        try:
            objects.append(decode_manifest(manifest, index))
        except DecodeError as e:
            logger.error(f"Failed to decode resource #{index} of class {class_name}: {e}")
            raise
    return objects


def validate_unique_identities(objects: Iterable[ManagedObject], class_name: str = "") -> None:
    """Reject classes declaring more than one manifest per apiVersion/kind."""
    seen: Dict[Tuple[str, str], int] = {}
    for index, obj in enumerate(objects):
        if obj.identity in seen:
            raise DuplicateIdentityError(
                f"class {class_name} declares {obj.api_version}/{obj.kind} more than once "
                f"(first at #{seen[obj.identity]})",
                index
            )
        seen[obj.identity] = index


def identities(objects: Iterable[ManagedObject]) -> set:
    """Return the set of (apiVersion, kind) pairs of the given objects."""
    return {obj.identity for obj in objects}
