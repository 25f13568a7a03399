"""Error taxonomy and backend failure classification."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .security import redact_secrets


class ErrorCategory(str, Enum):
    """Categories every failed tool call is reported under."""

    VALIDATION = "validation"
    PERMISSION = "permission"
    INDEX_REQUIRED = "index-required"
    NETWORK = "network"
    NOT_FOUND = "not-found"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClassifiedError:
    """A failure mapped to a category, a user-facing message and extra data."""

    category: ErrorCategory
    message: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class ConfigurationError(Exception):
    """Raised for startup faults: bad settings, duplicate tools, failed backend auth."""
    pass


class ToolError(Exception):
    """Raised by tool handlers for failures detected without the backend's help."""

    def __init__(self, category: ErrorCategory, message: str, metadata: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.category = category
        self.message = message
        self.metadata = dict(metadata or {})

    def to_classified(self) -> ClassifiedError:
        return ClassifiedError(self.category, self.message, self.metadata)


class PaginationError(ToolError):
    """Raised when a page token cannot be decoded."""

    def __init__(self, message: str):
        super().__init__(ErrorCategory.VALIDATION, message)


def validation_error(message: str) -> ToolError:
    return ToolError(ErrorCategory.VALIDATION, message)


def not_found_error(message: str) -> ToolError:
    return ToolError(ErrorCategory.NOT_FOUND, message)


INDEX_URL_PATTERN = re.compile(r"https://console\.(?:firebase|cloud)\.google\.com/[^\s\"'<>)\]]+")

INDEX_SIGNATURES = ("requires an index", "requires a composite index", "index is currently building")

PERMISSION_SIGNATURES = (
    "permission_denied",
    "permission denied",
    "permissiondenied",
    "missing or insufficient permissions",
    "insufficient permission",
    "forbidden",
    "unauthenticated",
    "does not have storage.",
    "403 ",
    "401 ",
)

NOT_FOUND_SIGNATURES = (
    "not_found",
    "not found",
    "notfound",
    "no document to update",
    "no such object",
    "no user record",
    "user_not_found",
    "usernotfounderror",
    "does not exist",
    "404 ",
)

NETWORK_SIGNATURES = (
    "unavailable",
    "deadline_exceeded",
    "deadline exceeded",
    "deadlineexceeded",
    "serviceunavailable",
    "max retries exceeded",
    "timed out",
    "timeout",
    "connection reset",
    "connection refused",
    "connection aborted",
    "econnrefused",
    "econnreset",
    "etimedout",
    "name resolution",
    "network is unreachable",
    "service unavailable",
    "503 ",
    "504 ",
)


def _signature(exc: BaseException) -> str:
    """Flatten an exception's type name, code and message into one lowercase string."""
    parts = [type(exc).__name__]
    code = getattr(exc, "code", None)
    if code is not None:
        parts.append(str(getattr(code, "name", code)))
    parts.append(str(exc))
    return " ".join(parts).lower() + " "


def _extract_index_url(exc: BaseException) -> Optional[str]:
    match = INDEX_URL_PATTERN.search(str(exc))
    if not match:
        return None
    return match.group(0).rstrip(".,;")


def _message(exc: BaseException) -> str:
    text = str(exc).strip()
    if not text:
        text = type(exc).__name__
    return redact_secrets(text)


def _classify(exc: BaseException) -> ClassifiedError:
    signature = _signature(exc)

    if any(s in signature for s in INDEX_SIGNATURES) or (
        "failed_precondition" in signature and "index" in signature
    ):
        url = _extract_index_url(exc) or ""
        message = "This query requires a composite index. Create it in the Firebase console"
        if url:
            message += f": {url}"
        return ClassifiedError(ErrorCategory.INDEX_REQUIRED, message, {"indexUrl": url})

    if any(s in signature for s in PERMISSION_SIGNATURES):
        return ClassifiedError(
            ErrorCategory.PERMISSION,
            f"Permission denied: {_message(exc)}. Check the service account's IAM roles and security rules.",
        )

    if any(s in signature for s in NOT_FOUND_SIGNATURES):
        return ClassifiedError(ErrorCategory.NOT_FOUND, f"Not found: {_message(exc)}")

    if isinstance(exc, (TimeoutError, ConnectionError)) or any(s in signature for s in NETWORK_SIGNATURES):
        return ClassifiedError(
            ErrorCategory.NETWORK,
            f"Network error talking to Firebase: {_message(exc)}",
        )

    return ClassifiedError(ErrorCategory.UNKNOWN, _message(exc))


def classify_error(exc: BaseException) -> ClassifiedError:
    """
    Map a failure surfaced by a backend call to an error category.

    Rules are applied in priority order: missing composite index, permission,
    missing resource, connectivity/timeout, then unknown. Never raises.

    Args:
        exc: Exception raised by the Firebase Admin SDK or the HTTP client

    Returns:
        ClassifiedError with a sanitized message
    """
    if isinstance(exc, ToolError):
        return exc.to_classified()
    try:
        return _classify(exc)
    except Exception:
        return ClassifiedError(
            ErrorCategory.UNKNOWN,
            f"Unexpected {type(exc).__name__} (error details unavailable)",
        )
