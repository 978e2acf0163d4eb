"""Errors returned by the Kubernetes API client."""

from __future__ import annotations

from enum import Enum

from deka.errors import DekaError


class ApiErrorKind(str, Enum):
    TRANSPORT = "transport"
    KIND_NOT_RECOGNIZED = "kind_not_recognized"
    STATUS = "status"


class ApiError(DekaError):
    """A failed call against the API server.

    ``status`` and ``reason`` mirror the ``code`` and ``reason`` fields of a
    Kubernetes ``Status`` response. Transport failures carry neither.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ApiErrorKind = ApiErrorKind.STATUS,
        status: int | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status = status
        self.reason = reason

    def __str__(self) -> str:
        if self.status is not None:
            label = f"{self.status} {self.reason}" if self.reason else str(self.status)
            return f"{label}: {self.message}"
        return self.message

    def __repr__(self) -> str:
        return (
            f"ApiError(kind={self.kind.value!r}, status={self.status!r}, "
            f"reason={self.reason!r}, message={self.message!r})"
        )

    @classmethod
    def transport(cls, message: str) -> "ApiError":
        return cls(message, kind=ApiErrorKind.TRANSPORT)

    @classmethod
    def kind_not_recognized(cls, api_version: str, kind: str) -> "ApiError":
        return cls(
            f"kind {kind!r} is not served by {api_version!r}",
            kind=ApiErrorKind.KIND_NOT_RECOGNIZED,
        )

    @classmethod
    def from_status(cls, status: int, body: object, fallback: str = "") -> "ApiError":
        """Build an error from an HTTP status and a decoded ``Status`` body."""
        reason = None
        message = fallback
        if isinstance(body, dict):
            reason = body.get("reason") or None
            message = str(body.get("message") or fallback)
            code = body.get("code")
            if isinstance(code, int) and code > 0:
                status = code
        return cls(message or f"HTTP {status}", status=status, reason=reason)
