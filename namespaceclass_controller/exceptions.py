"""Exceptions raised by the NamespaceClass Controller."""

from typing import Optional


class ControllerError(Exception):
    """Base class for controller errors."""


class DecodeError(ControllerError):
    """A resource manifest in a NamespaceClass could not be decoded."""

    def __init__(self, message: str, index: Optional[int] = None):
        self.index = index
        if index is not None:
            message = f"manifest #{index}: {message}"
        super().__init__(message)


class DuplicateIdentityError(DecodeError):
    """Two manifests in one class share the same apiVersion and kind."""


class ConflictError(ControllerError):
    """A write was rejected because the object changed on the server."""


class ReconcileCancelled(ControllerError):
    """The reconciliation was cancelled by its caller."""
