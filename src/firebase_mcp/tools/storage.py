"""Storage tools: list, inspect and upload files in the project's bucket."""

import base64
import binascii
import logging
import mimetypes
import os
import re
from datetime import timedelta
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import unquote, urlparse

import requests

from .. import pagination
from ..conversions import to_json_safe
from ..errors import not_found_error, validation_error
from ..security import SecurityValidator
from . import PAGE_TOKEN_SCHEMA, ToolHandler, checked

logger = logging.getLogger(__name__)

DATA_URL_PATTERN = re.compile(r"^data:(?P<type>[\w.+\-]+/[\w.+\-]+)?(?P<params>(;[^;,]*)*?);base64,(?P<data>.*)$", re.DOTALL)
DEFAULT_PAGE_SIZE = 100
MAX_DOWNLOAD_BYTES = 50 * 1024 * 1024

METADATA_SCHEMA = {
    "type": "object",
    "description": "Custom metadata key/value pairs stored with the file",
    "additionalProperties": {"type": "string"},
}


def file_entry(blob: Any) -> Dict[str, Any]:
    """Describe a Storage object."""
    return {
        "name": blob.name,
        "bucket": getattr(blob.bucket, "name", None),
        "size": blob.size,
        "contentType": blob.content_type,
        "updated": to_json_safe(blob.updated),
        "md5Hash": blob.md5_hash,
        "metadata": dict(blob.metadata or {}),
    }


def signed_or_public_url(blob: Any, ttl_seconds: int) -> str:
    """V4 signed URL when the credentials can sign, otherwise the public URL."""
    try:
        return blob.generate_signed_url(version="v4", expiration=timedelta(seconds=ttl_seconds), method="GET")
    except Exception as e:
        logger.debug("Could not sign URL for %s, using public URL: %s", blob.name, e)
        return blob.public_url


def public_or_signed_url(blob: Any, ttl_seconds: int) -> str:
    """
    Make the object public and return its URL; fall back to a signed URL.

    The object is already stored when this runs, so if neither works the
    plain public URL is returned rather than failing the upload.
    """
    try:
        blob.make_public()
        return blob.public_url
    except Exception as e:
        logger.debug("Could not make %s public, using signed URL: %s", blob.name, e)
    try:
        return blob.generate_signed_url(version="v4", expiration=timedelta(seconds=ttl_seconds), method="GET")
    except Exception as e:
        logger.warning("Could not sign URL for uploaded %s, returning public URL: %s", blob.name, e)
        return blob.public_url


def resolve_content(content: str, file_path: str) -> Tuple[bytes, Optional[str], bool]:
    """
    Turn the 'content' argument into bytes, a detected content type and a text flag.

    Accepts a base64 data URL, a file:// URL or existing local path, or plain text.
    """
    match = DATA_URL_PATTERN.match(content)
    if match:
        try:
            data = base64.b64decode(match.group("data"), validate=True)
        except (binascii.Error, ValueError):
            raise validation_error("content is a data URL but its base64 payload is invalid")
        return data, match.group("type"), False

    local_path = None
    if content.startswith("file://"):
        local_path = unquote(urlparse(content).path)
        if not os.path.isfile(local_path):
            raise validation_error(f"Local file not found: {local_path}")
    elif "\n" not in content and len(content) < 4096 and os.path.isfile(os.path.expanduser(content)):
        local_path = os.path.expanduser(content)

    if local_path:
        with open(local_path, "rb") as f:
            data = f.read()
        return data, mimetypes.guess_type(local_path)[0] or mimetypes.guess_type(file_path)[0], False

    return content.encode("utf-8"), None, True


def pick_content_type(explicit: Optional[str], detected: Optional[str], file_path: str, is_text: bool) -> str:
    if explicit:
        return explicit
    if detected:
        return detected
    guessed = mimetypes.guess_type(file_path)[0]
    if guessed:
        return guessed
    return "text/plain" if is_text else "application/octet-stream"


def _upload(blob: Any, data: bytes, content_type: str, metadata: Optional[Mapping[str, str]], ttl_seconds: int) -> Dict[str, Any]:
    if metadata:
        blob.metadata = dict(metadata)
    blob.upload_from_string(data, content_type=content_type)
    url = public_or_signed_url(blob, ttl_seconds)
    blob.reload()
    entry = file_entry(blob)
    entry["downloadUrl"] = url
    return entry


def _list_page(bucket: Any, prefix: str, page_size: int, gcs_token: Optional[str]) -> Dict[str, Any]:
    iterator = bucket.list_blobs(prefix=prefix or None, delimiter="/", max_results=page_size, page_token=gcs_token)
    page = next(iterator.pages, None)
    blobs = list(page) if page is not None else []
    next_gcs_token = iterator.next_page_token
    return {
        "files": [file_entry(b) for b in blobs if b.name != prefix],
        "directories": sorted(getattr(iterator, "prefixes", None) or []),
        "nextPageToken": pagination.encode({"gcs": next_gcs_token}) if next_gcs_token else None,
    }


class StorageListFilesTool(ToolHandler):
    """Tool for listing files under a directory prefix."""

    description = (
        "List files in the Firebase Storage bucket under an optional directory. "
        "Returns files, immediate subdirectories and a nextPageToken."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "directoryPath": {"type": "string", "description": "Directory prefix, e.g. 'images/'. Defaults to the bucket root."},
            "pageSize": {"type": "integer", "minimum": 1, "maximum": 1000, "description": f"Files per page (default {DEFAULT_PAGE_SIZE})"},
            "pageToken": PAGE_TOKEN_SCHEMA,
        },
        "required": [],
    }

    def __init__(self, clients, backend, audit_logger=None):
        super().__init__("storage_list_files", clients, backend, audit_logger)

    async def run_tool(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        prefix = checked(SecurityValidator.sanitize_storage_prefix, arguments.get("directoryPath"))
        page_size = int(arguments.get("pageSize") or DEFAULT_PAGE_SIZE)

        state = pagination.decode_optional(arguments.get("pageToken"))
        gcs_token = None
        if state is not None:
            gcs_token = state.get("gcs")
            if not isinstance(gcs_token, str) or not gcs_token:
                raise validation_error("Page token does not belong to a file listing")

        return await self.backend.call(_list_page, self.clients.bucket, prefix, page_size, gcs_token)


class StorageGetFileInfoTool(ToolHandler):
    """Tool for reading a file's metadata and a download URL."""

    description = "Get metadata for a file in Firebase Storage, including a download URL."
    input_schema = {
        "type": "object",
        "properties": {
            "filePath": {"type": "string", "minLength": 1, "description": "Path of the file in the bucket"},
        },
        "required": ["filePath"],
    }

    def __init__(self, clients, backend, audit_logger=None, signed_url_ttl: int = 3600):
        super().__init__("storage_get_file_info", clients, backend, audit_logger)
        self.signed_url_ttl = signed_url_ttl

    def _info(self, bucket: Any, path: str) -> Optional[Dict[str, Any]]:
        blob = bucket.get_blob(path)
        if blob is None:
            return None
        entry = file_entry(blob)
        entry["downloadUrl"] = signed_or_public_url(blob, self.signed_url_ttl)
        return entry

    async def run_tool(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        path = checked(SecurityValidator.sanitize_storage_path, arguments["filePath"])
        info = await self.backend.call(self._info, self.clients.bucket, path)
        if info is None:
            raise not_found_error(f"File not found: {path}")
        return info


class StorageUploadTool(ToolHandler):
    """Tool for uploading content given inline, as a data URL, or as a local file."""

    description = (
        "Upload a file to Firebase Storage. 'content' may be plain text, a base64 data URL "
        "(data:<type>;base64,...) or a local file path / file:// URL. Returns file metadata and a URL."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "filePath": {"type": "string", "minLength": 1, "description": "Destination path in the bucket"},
            "content": {"type": "string", "description": "Plain text, base64 data URL, or local file path"},
            "contentType": {"type": "string", "description": "MIME type; detected when omitted"},
            "metadata": METADATA_SCHEMA,
        },
        "required": ["filePath", "content"],
    }

    def __init__(self, clients, backend, audit_logger=None, signed_url_ttl: int = 3600):
        super().__init__("storage_upload", clients, backend, audit_logger)
        self.signed_url_ttl = signed_url_ttl

    async def run_tool(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        path = checked(SecurityValidator.sanitize_storage_path, arguments["filePath"])
        data, detected, is_text = resolve_content(arguments["content"], path)
        content_type = pick_content_type(arguments.get("contentType"), detected, path, is_text)

        blob = self.clients.bucket.blob(path)
        try:
            entry = await self.backend.call(
                _upload, blob, data, content_type, arguments.get("metadata"), self.signed_url_ttl,
                idempotent=False,
            )
        except Exception as e:
            self.audit("FAILED", path, str(e))
            raise

        self.audit("SUCCESS", path, f"bytes={len(data)} contentType={content_type}")
        return entry


def _download(url: str, timeout: float) -> Tuple[bytes, Optional[str]]:
    response = requests.get(url, timeout=timeout, stream=True)
    try:
        response.raise_for_status()
        chunks = []
        total = 0
        for chunk in response.iter_content(chunk_size=64 * 1024):
            total += len(chunk)
            if total > MAX_DOWNLOAD_BYTES:
                raise validation_error(f"Source file exceeds {MAX_DOWNLOAD_BYTES // (1024 * 1024)} MB limit")
            chunks.append(chunk)
        header_type = response.headers.get("Content-Type")
        return b"".join(chunks), header_type.split(";")[0].strip() if header_type else None
    finally:
        response.close()


class StorageUploadFromUrlTool(ToolHandler):
    """Tool for copying a file from an http(s) URL into the bucket."""

    description = (
        "Download a file from an http(s) URL and upload it to Firebase Storage. "
        "Returns file metadata and a URL."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "filePath": {"type": "string", "minLength": 1, "description": "Destination path in the bucket"},
            "sourceUrl": {"type": "string", "minLength": 1, "description": "http(s) URL to download"},
            "contentType": {"type": "string", "description": "MIME type; taken from the response when omitted"},
            "metadata": METADATA_SCHEMA,
        },
        "required": ["filePath", "sourceUrl"],
    }

    def __init__(self, clients, backend, audit_logger=None, signed_url_ttl: int = 3600):
        super().__init__("storage_upload_from_url", clients, backend, audit_logger)
        self.signed_url_ttl = signed_url_ttl

    async def run_tool(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        path = checked(SecurityValidator.sanitize_storage_path, arguments["filePath"])
        source_url = arguments["sourceUrl"]
        parsed = urlparse(source_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise validation_error("sourceUrl must be an http or https URL")

        data, header_type = await self.backend.call(_download, source_url, self.backend.timeout)
        content_type = pick_content_type(arguments.get("contentType"), header_type, path, is_text=False)

        blob = self.clients.bucket.blob(path)
        try:
            entry = await self.backend.call(
                _upload, blob, data, content_type, arguments.get("metadata"), self.signed_url_ttl,
                idempotent=False,
            )
        except Exception as e:
            self.audit("FAILED", path, f"source={source_url} error={e}")
            raise

        self.audit("SUCCESS", path, f"source={source_url} bytes={len(data)}")
        entry["sourceUrl"] = source_url
        return entry
