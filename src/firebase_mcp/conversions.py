"""Conversions between Firestore values and JSON-friendly data."""

import base64
import re
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional

from .errors import validation_error

SERVER_TIMESTAMP_MARKER = "__serverTimestamp"
TIMESTAMP_KEY = "__timestamp"
REFERENCE_KEY = "__reference"

# Full date-time only; plain dates and free text are left alone.
ISO_DATETIME_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2}(\.\d{1,9})?)?(Z|[+-]\d{2}:\d{2})?$"
)


def timestamp_to_iso(value: datetime) -> str:
    """Render a datetime (including Firestore's DatetimeWithNanoseconds) as ISO-8601."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.isoformat()
    if text.endswith("+00:00"):
        text = text[:-6] + "Z"
    return text


def millis_to_iso(value: Optional[int]) -> Optional[str]:
    """Convert epoch milliseconds (as used by Auth user metadata) to ISO-8601."""
    if value is None:
        return None
    return timestamp_to_iso(datetime.fromtimestamp(value / 1000.0, tz=timezone.utc))


def parse_iso_datetime(text: str) -> datetime:
    """
    Parse an ISO-8601 date-time string.

    Raises:
        ToolError (validation) if the text is not a date-time
    """
    if not isinstance(text, str) or not ISO_DATETIME_PATTERN.match(text.strip()):
        raise validation_error(f"Invalid ISO-8601 timestamp: {text!r}")
    normalized = text.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    # fromisoformat wants exactly microseconds on older interpreters
    normalized = re.sub(r"\.(\d+)", lambda m: "." + m.group(1)[:6].ljust(6, "0"), normalized, count=1)
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        raise validation_error(f"Invalid ISO-8601 timestamp: {text!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_iso_datetime(value: Any) -> bool:
    return isinstance(value, str) and bool(ISO_DATETIME_PATTERN.match(value))


def _is_document_reference(value: Any) -> bool:
    return hasattr(value, "path") and hasattr(value, "id") and hasattr(value, "parent") and not isinstance(value, (str, bytes))


def _is_geo_point(value: Any) -> bool:
    return hasattr(value, "latitude") and hasattr(value, "longitude") and not isinstance(value, dict)


def to_json_safe(value: Any) -> Any:
    """
    Recursively convert Firestore field values into JSON-serializable data.

    Timestamps become ISO-8601 strings, document references their path,
    geo points {"latitude", "longitude"}, bytes base64 text.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        return timestamp_to_iso(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, dict):
        return {str(k): to_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_safe(v) for v in value]
    if _is_document_reference(value):
        return value.path
    if _is_geo_point(value):
        return {"latitude": value.latitude, "longitude": value.longitude}
    return str(value)


def prepare_document_data(
    data: Any,
    server_timestamp: Any,
    make_reference: Callable[[str], Any],
) -> Any:
    """
    Convert tool input into values the Firestore SDK writes.

    Args:
        data: Document data from the tool call
        server_timestamp: The SDK's server-timestamp sentinel
        make_reference: Callable returning a DocumentReference for a path

    Markers understood:
      - "__serverTimestamp" -> server timestamp
      - {"__timestamp": "<ISO>"} -> datetime
      - {"__reference": "<path>"} -> document reference
    """
    if isinstance(data, str) and data == SERVER_TIMESTAMP_MARKER:
        return server_timestamp
    if isinstance(data, dict):
        if set(data.keys()) == {TIMESTAMP_KEY}:
            return parse_iso_datetime(data[TIMESTAMP_KEY])
        if set(data.keys()) == {REFERENCE_KEY}:
            path = data[REFERENCE_KEY]
            if not isinstance(path, str) or not path.strip("/"):
                raise validation_error("__reference must be a document path string")
            return make_reference(path.strip("/"))
        return {k: prepare_document_data(v, server_timestamp, make_reference) for k, v in data.items()}
    if isinstance(data, list):
        return [prepare_document_data(v, server_timestamp, make_reference) for v in data]
    return data


def prepare_filter_value(value: Any) -> Any:
    """ISO-8601 date-time strings in filters compare as timestamps."""
    if is_iso_datetime(value):
        return parse_iso_datetime(value)
    if isinstance(value, list):
        return [prepare_filter_value(v) for v in value]
    return value
