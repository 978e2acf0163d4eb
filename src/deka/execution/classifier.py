"""Retry classification for failed API calls.

Objects are submitted in no particular order, so a dependency that does not
exist yet shows up as an error. Such errors are classified as retryable and
the object converges once its prerequisite's own operation completes.
Anything not explicitly recognised is terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from deka.kube.errors import ApiError, ApiErrorKind


class ErrorCategory(str, Enum):
    TRANSPORT = "transport"
    KIND_NOT_RECOGNIZED = "kind_not_recognized"
    NOT_FOUND = "not_found"
    THROTTLED = "throttled"
    SERVER_ERROR = "server_error"
    TRANSIENT_CONFLICT = "transient_conflict"
    CONFLICT = "conflict"
    INVALID = "invalid"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    UNCLASSIFIED = "unclassified"


_RETRYABLE_CATEGORIES = frozenset(
    {
        ErrorCategory.TRANSPORT,
        ErrorCategory.KIND_NOT_RECOGNIZED,
        ErrorCategory.NOT_FOUND,
        ErrorCategory.THROTTLED,
        ErrorCategory.SERVER_ERROR,
        ErrorCategory.TRANSIENT_CONFLICT,
    }
)

_TRANSIENT_CONFLICT_PATTERNS: tuple[str, ...] = (
    "the object has been modified",
    "being deleted",
    "being terminated",
    "try again",
)


@dataclass(frozen=True, slots=True)
class Classification:
    category: ErrorCategory

    @property
    def retryable(self) -> bool:
        return self.category in _RETRYABLE_CATEGORIES

    @property
    def terminal(self) -> bool:
        return not self.retryable


def classify_error(error: BaseException) -> Classification:
    """Decide whether a failed apply or delete is worth retrying."""

    if not isinstance(error, ApiError):
        return Classification(ErrorCategory.UNCLASSIFIED)

    if error.kind is ApiErrorKind.TRANSPORT:
        return Classification(ErrorCategory.TRANSPORT)
    if error.kind is ApiErrorKind.KIND_NOT_RECOGNIZED:
        return Classification(ErrorCategory.KIND_NOT_RECOGNIZED)

    status = error.status
    reason = (error.reason or "").lower()

    if status == 404 or reason == "notfound":
        return Classification(ErrorCategory.NOT_FOUND)
    if status == 429 or reason == "toomanyrequests":
        return Classification(ErrorCategory.THROTTLED)
    if status is not None and 500 <= status <= 599:
        return Classification(ErrorCategory.SERVER_ERROR)
    if status == 409:
        message = error.message.lower()
        if any(pattern in message for pattern in _TRANSIENT_CONFLICT_PATTERNS):
            return Classification(ErrorCategory.TRANSIENT_CONFLICT)
        return Classification(ErrorCategory.CONFLICT)
    if status in (400, 422) or reason in {"badrequest", "invalid"}:
        return Classification(ErrorCategory.INVALID)
    if status == 401 or reason == "unauthorized":
        return Classification(ErrorCategory.UNAUTHORIZED)
    if status == 403 or reason == "forbidden":
        return Classification(ErrorCategory.FORBIDDEN)

    return Classification(ErrorCategory.UNCLASSIFIED)
