"""Input validation, secret redaction, and audit logging."""

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Raised when a path or identifier fails validation."""
    pass


# (pattern, replacement) pairs applied in order
SECRET_PATTERNS = [
    (re.compile(r"-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----", re.DOTALL),
     "[REDACTED PRIVATE KEY]"),
    (re.compile(r'("private_key(?:_id)?"\s*:\s*")[^"]*(")'), r"\1[REDACTED]\2"),
    (re.compile(r"\bya29\.[0-9A-Za-z\-_.]+"), "[REDACTED TOKEN]"),
    (re.compile(r"(?i)\b(bearer)\s+[0-9A-Za-z\-_.~+/]+=*"), r"\1 [REDACTED]"),
    (re.compile(r"\bAIza[0-9A-Za-z\-_]{35}\b"), "[REDACTED API KEY]"),
    (re.compile(r"(?i)([?&](?:x-goog-signature|signature|access_token|token|key)=)[^&\s\"']+"), r"\1[REDACTED]"),
]


def redact_secrets(text: str) -> str:
    """
    Remove credentials and signing material from a message.

    Args:
        text: Message that may echo back request or credential data

    Returns:
        The message with private keys, OAuth tokens, API keys and URL
        signatures replaced by placeholders
    """
    for pattern, replacement in SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class SecurityValidator:
    """Validates Firestore paths and Storage object names before they reach the SDK."""

    MAX_PATH_LENGTH = 1024

    @staticmethod
    def _segments(path: str, what: str) -> List[str]:
        if not path or not path.strip():
            raise ValidationError(f"{what} cannot be empty")
        if len(path) > SecurityValidator.MAX_PATH_LENGTH:
            raise ValidationError(f"{what} too long (max {SecurityValidator.MAX_PATH_LENGTH} characters)")
        segments = path.strip("/").split("/")
        for segment in segments:
            if not segment:
                raise ValidationError(f"{what} '{path}' contains an empty segment")
            if segment in (".", ".."):
                raise ValidationError(f"{what} '{path}' cannot contain '.' or '..' segments")
            if segment.startswith("__") and segment.endswith("__"):
                raise ValidationError(f"{what} '{path}' uses a reserved identifier: {segment}")
        return segments

    @staticmethod
    def validate_collection_path(path: str) -> str:
        """
        Validate a collection path such as 'users' or 'users/ada/orders'.

        Returns:
            The normalized path (no leading/trailing slash)

        Raises:
            ValidationError if the path is empty, malformed or names a document
        """
        segments = SecurityValidator._segments(path, "Collection path")
        if len(segments) % 2 == 0:
            raise ValidationError(
                f"'{path}' is a document path; collection paths have an odd number of segments"
            )
        return "/".join(segments)

    @staticmethod
    def validate_document_path(path: str) -> str:
        """
        Validate a full document path such as 'users/ada'.

        Raises:
            ValidationError if the path does not have an even number of segments
        """
        segments = SecurityValidator._segments(path, "Document path")
        if len(segments) % 2 != 0:
            raise ValidationError(
                f"'{path}' is a collection path; document paths have an even number of segments"
            )
        return "/".join(segments)

    @staticmethod
    def validate_document_id(doc_id: str) -> str:
        """Validate a single document id (no slashes)."""
        if not doc_id or not doc_id.strip():
            raise ValidationError("Document id cannot be empty")
        if "/" in doc_id:
            raise ValidationError("Document id cannot contain '/'")
        SecurityValidator._segments(doc_id, "Document id")
        return doc_id

    @staticmethod
    def validate_collection_id(collection_id: str) -> str:
        """Validate a bare collection id used by collection group queries."""
        if not collection_id or "/" in collection_id:
            raise ValidationError("Collection id must be a single non-empty segment without '/'")
        SecurityValidator._segments(collection_id, "Collection id")
        return collection_id

    @staticmethod
    def sanitize_storage_path(path: str) -> str:
        """
        Normalize a Storage object name.

        Leading slashes are stripped, repeated slashes collapsed, whitespace
        replaced by '-', and characters outside [A-Za-z0-9._-/] dropped.

        Raises:
            ValidationError if the result is empty or contains '..' segments
        """
        if not path or not path.strip():
            raise ValidationError("File path cannot be empty")
        cleaned = re.sub(r"\s+", "-", path.strip())
        cleaned = re.sub(r"[^A-Za-z0-9._\-/]", "", cleaned)
        cleaned = re.sub(r"/{2,}", "/", cleaned).lstrip("/")
        if any(segment in (".", "..") for segment in cleaned.split("/")):
            raise ValidationError("File path cannot contain '.' or '..' segments")
        if not cleaned or cleaned.endswith("/"):
            raise ValidationError(f"File path '{path}' does not name a file")
        return cleaned

    @staticmethod
    def sanitize_storage_prefix(prefix: Optional[str]) -> str:
        """Normalize a directory prefix for listings; empty means the bucket root."""
        if not prefix or not prefix.strip("/ "):
            return ""
        cleaned = SecurityValidator.sanitize_storage_path(prefix.rstrip("/"))
        return cleaned + "/"


class AuditLogger:
    """Audit trail for operations that modify Firestore or Storage."""

    def __init__(self, log_path: Optional[str] = None):
        """
        Initialize audit logger.

        Args:
            log_path: Path to audit log file. None disables the audit trail.
        """
        self.log_path = Path(log_path).expanduser() if log_path else None

    @property
    def enabled(self) -> bool:
        return self.log_path is not None

    def log(self, action: str, target: str, details: str, user: str = "mcp-server"):
        """
        Write audit log entry.

        Args:
            action: Action performed (e.g. firestore_add_document:SUCCESS)
            target: Document path or Storage object name
            details: Additional details
            user: User/source of the action
        """
        if self.log_path is None:
            return

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        log_entry = "[{0}] USER={1} ACTION={2} TARGET={3} DETAILS={4}\n".format(
            timestamp, user, action, target, redact_secrets(details)
        )

        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a") as f:
                f.write(log_entry)
        except OSError as e:
            logger.warning("Could not write to audit log %s: %s", self.log_path, e)
