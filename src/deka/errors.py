"""Exception hierarchy shared across the package."""

from __future__ import annotations


class DekaError(Exception):
    """Base class for errors raised by deka."""


class ManifestError(DekaError):
    """Raised when an input document cannot be turned into a target object."""

    def __init__(self, message: str, document_index: int | None = None) -> None:
        if document_index is not None:
            message = f"document {document_index}: {message}"
        super().__init__(message)
        self.document_index = document_index


class KubeConfigError(DekaError):
    """Raised when cluster connection settings cannot be resolved."""


class InvalidTransition(DekaError):
    """Raised when an object operation is driven into an illegal state."""
