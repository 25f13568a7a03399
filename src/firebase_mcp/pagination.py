"""Opaque continuation tokens for list and query tools."""

import base64
import binascii
import hashlib
import json
from typing import Any, Dict, Mapping, Optional

from .errors import PaginationError

TOKEN_VERSION = "v1"
CHECKSUM_LENGTH = 12


def _canonical_json(state: Mapping[str, Any]) -> bytes:
    return json.dumps(state, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _checksum(raw: bytes) -> str:
    return hashlib.sha256(raw).hexdigest()[:CHECKSUM_LENGTH]


def encode(state: Mapping[str, Any]) -> str:
    """
    Encode a cursor state into an opaque page token.

    Args:
        state: JSON-serializable mapping describing where the next page starts

    Returns:
        Token of the form 'v1.<urlsafe base64 JSON>.<checksum>'
    """
    if not isinstance(state, Mapping):
        raise TypeError("cursor state must be a mapping")
    raw = _canonical_json(state)
    body = base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
    return f"{TOKEN_VERSION}.{body}.{_checksum(raw)}"


def decode(token: str) -> Dict[str, Any]:
    """
    Decode a page token produced by encode().

    Args:
        token: Token returned as nextPageToken by a previous call

    Returns:
        The cursor state that was encoded

    Raises:
        PaginationError if the token is malformed, truncated or altered
    """
    if not isinstance(token, str) or not token:
        raise PaginationError("Page token must be a non-empty string")

    parts = token.split(".")
    if len(parts) != 3 or parts[0] != TOKEN_VERSION:
        raise PaginationError("Malformed page token")
    _, body, checksum = parts

    try:
        raw = base64.urlsafe_b64decode(body + "=" * (-len(body) % 4))
    except (binascii.Error, ValueError):
        raise PaginationError("Malformed page token: invalid encoding")

    if _checksum(raw) != checksum:
        raise PaginationError("Page token is corrupted or was modified")

    try:
        state = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise PaginationError("Malformed page token: invalid payload")

    if not isinstance(state, dict):
        raise PaginationError("Malformed page token: invalid payload")
    return state


def decode_optional(token: Optional[str]) -> Optional[Dict[str, Any]]:
    """Decode a token when one was supplied; None or '' means 'first page'."""
    if token is None or token == "":
        return None
    return decode(token)
