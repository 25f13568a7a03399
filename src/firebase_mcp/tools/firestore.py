"""Firestore tools: document CRUD, collection listing and collection group queries."""

from typing import Any, Dict, Mapping, Optional, Sequence

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from .. import pagination
from ..conversions import prepare_document_data, prepare_filter_value, to_json_safe
from ..errors import not_found_error, validation_error
from ..security import SecurityValidator
from . import LIMIT_SCHEMA, PAGE_TOKEN_SCHEMA, ToolHandler, checked, limit_argument

FILTER_OPERATORS = ["<", "<=", "==", "!=", ">", ">=", "array-contains", "array-contains-any", "in", "not-in"]
LIST_OPERATORS = ("array-contains-any", "in", "not-in")

FILTERS_SCHEMA = {
    "type": "array",
    "description": (
        "Filter conditions, combined with AND. Values that are ISO-8601 date-times "
        "(e.g. '2024-05-01T00:00:00Z') compare as timestamps."
    ),
    "items": {
        "type": "object",
        "properties": {
            "field": {"type": "string", "minLength": 1, "description": "Field path, e.g. 'status' or 'address.city'"},
            "operator": {"type": "string", "enum": FILTER_OPERATORS},
            "value": {"description": "Value to compare against (an array for in, not-in, array-contains-any)"},
        },
        "required": ["field", "operator", "value"],
        "additionalProperties": False,
    },
}

ORDER_BY_SCHEMA = {
    "type": "array",
    "description": "Sort order, applied in sequence",
    "items": {
        "type": "object",
        "properties": {
            "field": {"type": "string", "minLength": 1},
            "direction": {"type": "string", "enum": ["asc", "desc"], "default": "asc"},
        },
        "required": ["field"],
        "additionalProperties": False,
    },
}

DATA_DESCRIPTION = (
    "Document fields. Use \"__serverTimestamp\" for the server time, "
    "{\"__timestamp\": \"<ISO-8601>\"} for a timestamp and "
    "{\"__reference\": \"collection/doc\"} for a document reference."
)


def document_payload(snapshot: Any) -> Dict[str, Any]:
    """Serialize a DocumentSnapshot as {"id", "path", "data"}."""
    return {
        "id": snapshot.id,
        "path": snapshot.reference.path,
        "data": to_json_safe(snapshot.to_dict() or {}),
    }


def apply_filters(query: Any, filters: Optional[Sequence[Mapping[str, Any]]]) -> Any:
    for condition in filters or []:
        operator = condition["operator"]
        value = condition["value"]
        if operator in LIST_OPERATORS and not isinstance(value, list):
            raise validation_error(f"Operator '{operator}' on '{condition['field']}' requires an array value")
        query = query.where(filter=FieldFilter(condition["field"], operator, prepare_filter_value(value)))
    return query


def apply_order(query: Any, order_by: Optional[Sequence[Mapping[str, Any]]]) -> Any:
    for order in order_by or []:
        direction = firestore.Query.DESCENDING if order.get("direction") == "desc" else firestore.Query.ASCENDING
        query = query.order_by(order["field"], direction=direction)
    return query


def after_path(token: Optional[str]) -> Optional[str]:
    state = pagination.decode_optional(token)
    if state is None:
        return None
    after = state.get("after")
    if not isinstance(after, str) or not after:
        raise validation_error("Page token does not belong to a document listing")
    return after


def fetch_document_page(db: Any, query: Any, start_after: Optional[str], limit: int) -> Dict[str, Any]:
    """
    Run one page of a query.

    Fetches limit + 1 documents so nextPageToken is only issued when another
    page exists. The token records the last returned document's path.
    """
    if start_after:
        cursor = db.document(start_after).get()
        if not cursor.exists:
            raise validation_error("Page token refers to a document that no longer exists; restart the listing")
        query = query.start_after(cursor)

    snapshots = list(query.limit(limit + 1).stream())
    has_more = len(snapshots) > limit
    snapshots = snapshots[:limit]

    next_token = None
    if has_more and snapshots:
        next_token = pagination.encode({"after": snapshots[-1].reference.path})
    return {
        "documents": [document_payload(s) for s in snapshots],
        "nextPageToken": next_token,
    }


class FirestoreAddDocumentTool(ToolHandler):
    """Tool for adding a document with an auto-generated id."""

    description = "Add a document to a Firestore collection. Returns the generated document id and path."
    input_schema = {
        "type": "object",
        "properties": {
            "collection": {"type": "string", "minLength": 1, "description": "Collection path, e.g. 'users' or 'users/ada/orders'"},
            "data": {"type": "object", "description": DATA_DESCRIPTION},
        },
        "required": ["collection", "data"],
    }

    def __init__(self, clients, backend, audit_logger=None):
        super().__init__("firestore_add_document", clients, backend, audit_logger)

    async def run_tool(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        collection = checked(SecurityValidator.validate_collection_path, arguments["collection"])
        db = self.clients.db
        data = prepare_document_data(arguments["data"], firestore.SERVER_TIMESTAMP, db.document)

        try:
            _, ref = await self.backend.call(db.collection(collection).add, data, idempotent=False)
        except Exception as e:
            self.audit("FAILED", collection, str(e))
            raise

        self.audit("SUCCESS", ref.path, f"fields={len(data)}")
        return {"id": ref.id, "path": ref.path}


class FirestoreListDocumentsTool(ToolHandler):
    """Tool for paging through a collection with optional filters."""

    description = (
        "List documents in a Firestore collection with optional filters and ordering. "
        "Pass nextPageToken back as pageToken (with the same filters) to get the next page."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "collection": {"type": "string", "minLength": 1, "description": "Collection path"},
            "filters": FILTERS_SCHEMA,
            "orderBy": ORDER_BY_SCHEMA,
            "limit": LIMIT_SCHEMA,
            "pageToken": PAGE_TOKEN_SCHEMA,
        },
        "required": ["collection"],
    }

    def __init__(self, clients, backend, audit_logger=None):
        super().__init__("firestore_list_documents", clients, backend, audit_logger)

    async def run_tool(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        collection = checked(SecurityValidator.validate_collection_path, arguments["collection"])
        start_after = after_path(arguments.get("pageToken"))
        limit = limit_argument(arguments)
        db = self.clients.db

        query = apply_filters(db.collection(collection), arguments.get("filters"))
        query = apply_order(query, arguments.get("orderBy"))
        return await self.backend.call(fetch_document_page, db, query, start_after, limit)


class FirestoreGetDocumentTool(ToolHandler):
    """Tool for reading one document."""

    description = "Get a Firestore document by collection and id. Timestamps are returned as ISO-8601 strings."
    input_schema = {
        "type": "object",
        "properties": {
            "collection": {"type": "string", "minLength": 1, "description": "Collection path"},
            "id": {"type": "string", "minLength": 1, "description": "Document id"},
        },
        "required": ["collection", "id"],
    }

    def __init__(self, clients, backend, audit_logger=None):
        super().__init__("firestore_get_document", clients, backend, audit_logger)

    async def run_tool(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        collection = checked(SecurityValidator.validate_collection_path, arguments["collection"])
        doc_id = checked(SecurityValidator.validate_document_id, arguments["id"])

        snapshot = await self.backend.call(self.clients.db.collection(collection).document(doc_id).get)
        if not snapshot.exists:
            raise not_found_error(f"Document {collection}/{doc_id} not found")
        return document_payload(snapshot)


class FirestoreUpdateDocumentTool(ToolHandler):
    """Tool for updating fields of an existing document."""

    description = (
        "Update fields of an existing Firestore document. Only the given fields change; "
        "dotted keys such as 'address.city' update nested fields."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "collection": {"type": "string", "minLength": 1, "description": "Collection path"},
            "id": {"type": "string", "minLength": 1, "description": "Document id"},
            "data": {"type": "object", "minProperties": 1, "description": DATA_DESCRIPTION},
        },
        "required": ["collection", "id", "data"],
    }

    def __init__(self, clients, backend, audit_logger=None):
        super().__init__("firestore_update_document", clients, backend, audit_logger)

    async def run_tool(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        collection = checked(SecurityValidator.validate_collection_path, arguments["collection"])
        doc_id = checked(SecurityValidator.validate_document_id, arguments["id"])
        db = self.clients.db
        data = prepare_document_data(arguments["data"], firestore.SERVER_TIMESTAMP, db.document)
        ref = db.collection(collection).document(doc_id)

        try:
            await self.backend.call(ref.update, data)
        except Exception as e:
            self.audit("FAILED", ref.path, str(e))
            raise

        self.audit("SUCCESS", ref.path, f"fields={sorted(data)}")
        return {"id": doc_id, "path": ref.path, "updated": True}


class FirestoreDeleteDocumentTool(ToolHandler):
    """Tool for deleting a document."""

    description = "Delete a Firestore document. Subcollections are not deleted."
    input_schema = {
        "type": "object",
        "properties": {
            "collection": {"type": "string", "minLength": 1, "description": "Collection path"},
            "id": {"type": "string", "minLength": 1, "description": "Document id"},
        },
        "required": ["collection", "id"],
    }

    def __init__(self, clients, backend, audit_logger=None):
        super().__init__("firestore_delete_document", clients, backend, audit_logger)

    async def run_tool(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        collection = checked(SecurityValidator.validate_collection_path, arguments["collection"])
        doc_id = checked(SecurityValidator.validate_document_id, arguments["id"])
        ref = self.clients.db.collection(collection).document(doc_id)

        # Only the read decides not-found. A blind delete is idempotent, so a
        # retry after a lost acknowledgement still succeeds.
        try:
            snapshot = await self.backend.call(ref.get)
            if not snapshot.exists:
                raise not_found_error(f"Document {collection}/{doc_id} not found")
            await self.backend.call(ref.delete)
        except Exception as e:
            self.audit("FAILED", ref.path, str(e))
            raise

        self.audit("SUCCESS", ref.path, "deleted")
        return {"id": doc_id, "path": ref.path, "deleted": True}


def _list_collection_page(
    parent: Any, parent_path: str, start_after: Optional[str], limit: int
) -> Dict[str, Any]:
    refs = sorted(parent.collections(), key=lambda ref: ref.id)
    if start_after is not None:
        refs = [ref for ref in refs if ref.id > start_after]
    page = refs[:limit]
    next_token = None
    if len(refs) > limit:
        next_token = pagination.encode({"after": page[-1].id})
    return {
        "collections": [
            {"id": ref.id, "path": f"{parent_path}/{ref.id}" if parent_path else ref.id} for ref in page
        ],
        "nextPageToken": next_token,
    }


class FirestoreListCollectionsTool(ToolHandler):
    """Tool for listing root collections or the subcollections of a document."""

    description = (
        "List Firestore collections, sorted by id. Without documentPath lists root collections; "
        "with documentPath (e.g. 'users/ada') lists that document's subcollections."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "documentPath": {"type": "string", "description": "Optional parent document path"},
            "limit": LIMIT_SCHEMA,
            "pageToken": PAGE_TOKEN_SCHEMA,
        },
        "required": [],
    }

    def __init__(self, clients, backend, audit_logger=None):
        super().__init__("firestore_list_collections", clients, backend, audit_logger)

    async def run_tool(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        db = self.clients.db
        document_path = arguments.get("documentPath")
        parent_path = ""
        parent = db
        if document_path:
            parent_path = checked(SecurityValidator.validate_document_path, document_path)
            parent = db.document(parent_path)

        state = pagination.decode_optional(arguments.get("pageToken"))
        start_after = None
        if state is not None:
            start_after = state.get("after")
            if not isinstance(start_after, str):
                raise validation_error("Page token does not belong to a collection listing")

        return await self.backend.call(
            _list_collection_page, parent, parent_path, start_after, limit_argument(arguments)
        )


class FirestoreQueryCollectionGroupTool(ToolHandler):
    """Tool for querying every collection that shares an id."""

    description = (
        "Query all collections with the given id across the database (a collection group query). "
        "Combining filters and ordering may require a composite index; the error then includes "
        "a console link that creates it."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "collectionId": {"type": "string", "minLength": 1, "description": "Collection id, e.g. 'orders'"},
            "filters": FILTERS_SCHEMA,
            "orderBy": ORDER_BY_SCHEMA,
            "limit": LIMIT_SCHEMA,
            "pageToken": PAGE_TOKEN_SCHEMA,
        },
        "required": ["collectionId"],
    }

    def __init__(self, clients, backend, audit_logger=None):
        super().__init__("firestore_query_collection_group", clients, backend, audit_logger)

    async def run_tool(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        collection_id = checked(SecurityValidator.validate_collection_id, arguments["collectionId"])
        start_after = after_path(arguments.get("pageToken"))
        db = self.clients.db

        query = apply_filters(db.collection_group(collection_id), arguments.get("filters"))
        query = apply_order(query, arguments.get("orderBy"))
        return await self.backend.call(fetch_document_page, db, query, start_after, limit_argument(arguments))
