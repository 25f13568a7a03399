"""Shared fixtures: in-memory stand-ins for the Firestore, Storage and Auth clients."""

import json
import threading
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from google.api_core import exceptions as google_exceptions
from google.cloud import firestore

from firebase_mcp.backend import BackendRunner
from firebase_mcp.config import AppConfig
from firebase_mcp.firebase_client import FirebaseClients
from firebase_mcp.server import create_context


def _lookup(data, field_path):
    value = data
    for part in field_path.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def _matches(value, op, expected):
    if op == "==":
        return value == expected
    if op == "!=":
        return value is not None and value != expected
    if op == "in":
        return value in expected
    if op == "not-in":
        return value is not None and value not in expected
    if op == "array-contains":
        return isinstance(value, list) and expected in value
    if op == "array-contains-any":
        return isinstance(value, list) and any(v in value for v in expected)
    if value is None:
        return False
    return {
        "<": value < expected,
        "<=": value <= expected,
        ">": value > expected,
        ">=": value >= expected,
    }[op]


def _resolve_sentinels(data):
    if data is firestore.SERVER_TIMESTAMP:
        return datetime.now(timezone.utc)
    if isinstance(data, dict):
        return {k: _resolve_sentinels(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_resolve_sentinels(v) for v in data]
    return data


class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return None if self._data is None else dict(self._data)


class FakeDocumentRef:
    def __init__(self, db, path):
        self._db = db
        self.path = path
        self.id = path.split("/")[-1]

    @property
    def parent(self):
        return FakeCollection(self._db, self.path.rsplit("/", 1)[0])

    def get(self):
        return FakeSnapshot(self, self._db.docs.get(self.path))

    def set(self, data):
        self._db.docs[self.path] = _resolve_sentinels(dict(data))

    def update(self, data):
        current = self._db.docs.get(self.path)
        if current is None:
            raise google_exceptions.NotFound(f"No document to update: projects/demo/databases/(default)/documents/{self.path}")
        for key, value in _resolve_sentinels(dict(data)).items():
            target = current
            parts = key.split(".")
            for part in parts[:-1]:
                target = target.setdefault(part, {})
            target[parts[-1]] = value

    def delete(self):
        with self._db.lock:
            self._db.delete_calls += 1
        self._db.docs.pop(self.path, None)
        if self._db.delete_errors:
            raise self._db.delete_errors.pop(0)

    def collections(self):
        return self._db.child_collections(self.path)


class FakeQuery:
    def __init__(self, db, selector, filters=(), orders=(), limit_count=None, cursor=None):
        self._db = db
        self._selector = selector
        self._filters = list(filters)
        self._orders = list(orders)
        self._limit = limit_count
        self._cursor = cursor

    def _copy(self, **changes):
        params = dict(
            filters=self._filters, orders=self._orders, limit_count=self._limit, cursor=self._cursor
        )
        params.update(changes)
        return FakeQuery(self._db, self._selector, **params)

    def where(self, filter=None):
        return self._copy(filters=self._filters + [(filter.field_path, filter.op_string, filter.value)])

    def order_by(self, field_path, direction="ASCENDING"):
        return self._copy(orders=self._orders + [(field_path, direction)])

    def limit(self, count):
        return self._copy(limit_count=count)

    def start_after(self, snapshot):
        return self._copy(cursor=snapshot.reference.path)

    def stream(self):
        with self._db.lock:
            self._db.stream_calls += 1
        if self._db.query_error is not None:
            raise self._db.query_error

        rows = [(path, data) for path, data in self._db.docs.items() if self._selector(path)]
        rows = [
            (path, data) for path, data in rows
            if all(_matches(_lookup(data, f), op, v) for f, op, v in self._filters)
        ]
        rows.sort(key=lambda row: row[0])
        for field_path, direction in reversed(self._orders):
            rows.sort(key=lambda row: _lookup(row[1], field_path), reverse=direction == "DESCENDING")

        if self._cursor is not None:
            paths = [path for path, _ in rows]
            rows = rows[paths.index(self._cursor) + 1:] if self._cursor in paths else []
        if self._limit is not None:
            rows = rows[:self._limit]
        return iter([FakeSnapshot(FakeDocumentRef(self._db, path), dict(data)) for path, data in rows])


class FakeCollection(FakeQuery):
    # Like the SDK, collection references expose only id and a private _path tuple.
    def __init__(self, db, path):
        self._path = tuple(path.split("/"))
        self.id = self._path[-1]
        depth = len(path.split("/")) + 1
        super().__init__(
            db, lambda p: p.startswith(path + "/") and len(p.split("/")) == depth
        )

    def document(self, doc_id):
        return FakeDocumentRef(self._db, "/".join(self._path + (doc_id,)))

    def add(self, data):
        ref = self.document(uuid.uuid4().hex[:20])
        ref.set(data)
        return datetime.now(timezone.utc), ref


class FakeFirestore:
    """Dictionary-backed Firestore client covering the calls the tools make."""

    def __init__(self):
        self.docs = {}
        self.query_error = None
        self.stream_calls = 0
        # Errors raised by delete() after the document is removed (a lost acknowledgement)
        self.delete_errors = []
        self.delete_calls = 0
        self.lock = threading.Lock()

    def collection(self, path):
        return FakeCollection(self, path)

    def document(self, path):
        return FakeDocumentRef(self, path)

    def collection_group(self, collection_id):
        def selector(path):
            parts = path.split("/")
            return len(parts) % 2 == 0 and parts[-2] == collection_id

        return FakeQuery(self, selector)

    def child_collections(self, parent_path):
        prefix = parent_path + "/" if parent_path else ""
        depth = len(prefix.split("/")) - 1 if prefix else 0
        ids = set()
        for path in self.docs:
            if path.startswith(prefix):
                parts = path.split("/")
                if len(parts) > depth + 1:
                    ids.add(parts[depth])
        return [FakeCollection(self, prefix + cid) for cid in sorted(ids)]

    def collections(self):
        return self.child_collections("")

    def seed(self, path, data):
        self.docs[path] = dict(data)


class FakeBlob:
    def __init__(self, bucket, name):
        self.bucket = bucket
        self.name = name
        self.size = None
        self.content_type = None
        self.updated = None
        self.md5_hash = None
        self.metadata = None
        self.data = None
        self.public = False
        self.can_sign = True

    @property
    def public_url(self):
        return f"https://storage.googleapis.com/{self.bucket.name}/{self.name}"

    def upload_from_string(self, data, content_type=None):
        self.data = data
        self.size = len(data)
        self.content_type = content_type
        self.updated = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        self.md5_hash = "md5"
        self.bucket.objects[self.name] = self

    def make_public(self):
        if not self.bucket.allow_public:
            raise google_exceptions.Forbidden("Uniform bucket-level access is enabled")
        self.public = True

    def generate_signed_url(self, version="v4", expiration=None, method="GET"):
        if not (self.can_sign and self.bucket.can_sign):
            raise AttributeError("you need a private key to sign credentials")
        return f"https://signed.example/{self.bucket.name}/{self.name}?X-Goog-Signature=abc"

    def reload(self):
        pass


class FakeBlobIterator:
    def __init__(self, blobs, prefixes, next_page_token):
        self._blobs = blobs
        self.prefixes = set(prefixes)
        self.next_page_token = next_page_token

    @property
    def pages(self):
        yield iter(self._blobs)


class FakeBucket:
    def __init__(self, name="demo.firebasestorage.app"):
        self.name = name
        self.objects = {}
        self.allow_public = True
        self.can_sign = True

    def blob(self, name):
        return FakeBlob(self, name)

    def get_blob(self, name):
        return self.objects.get(name)

    def put(self, name, data, content_type="text/plain"):
        blob = FakeBlob(self, name)
        blob.upload_from_string(data, content_type=content_type)
        return blob

    def list_blobs(self, prefix=None, delimiter=None, max_results=None, page_token=None):
        prefix = prefix or ""
        files = []
        prefixes = set()
        for name in sorted(self.objects):
            if not name.startswith(prefix):
                continue
            rest = name[len(prefix):]
            if delimiter and delimiter in rest:
                prefixes.add(prefix + rest.split(delimiter)[0] + delimiter)
            else:
                files.append(self.objects[name])

        offset = int(page_token) if page_token else 0
        end = offset + max_results if max_results else len(files)
        next_token = str(end) if end < len(files) else None
        return FakeBlobIterator(files[offset:end], prefixes, next_token)


class UserNotFoundError(Exception):
    pass


class FakeUsers:
    def __init__(self):
        self.by_uid = {}
        self.lookups = []

    def add(self, uid, email, **extra):
        record = SimpleNamespace(
            uid=uid,
            email=email,
            email_verified=extra.get("email_verified", True),
            display_name=extra.get("display_name"),
            photo_url=None,
            phone_number=None,
            disabled=False,
            provider_data=[SimpleNamespace(provider_id="password", uid=email, email=email, display_name=None)],
            custom_claims=extra.get("custom_claims"),
            user_metadata=SimpleNamespace(
                creation_timestamp=1714564800000,
                last_sign_in_timestamp=None,
                last_refresh_timestamp=None,
            ),
        )
        self.by_uid[uid] = record
        return record

    def get_user(self, uid):
        self.lookups.append(("uid", uid))
        if uid not in self.by_uid:
            raise UserNotFoundError(f"No user record found for the provided user ID: {uid}")
        return self.by_uid[uid]

    def get_user_by_email(self, email):
        self.lookups.append(("email", email))
        for record in self.by_uid.values():
            if record.email == email:
                return record
        raise UserNotFoundError(f"No user record found for the provided email: {email}")


@pytest.fixture
def fake_db():
    return FakeFirestore()


@pytest.fixture
def fake_bucket():
    return FakeBucket()


@pytest.fixture
def fake_users():
    return FakeUsers()


@pytest.fixture
def clients(fake_db, fake_bucket, fake_users):
    return FirebaseClients(db=fake_db, users=fake_users, bucket=fake_bucket)


@pytest.fixture
def backend():
    return BackendRunner(timeout=5.0, max_retries=2, initial_backoff=0.01, max_backoff=0.02)


@pytest.fixture
def app_config(tmp_path):
    cfg = AppConfig()
    cfg.audit.path = str(tmp_path / "audit.log")
    return cfg


@pytest.fixture
def context(app_config, clients, backend):
    return create_context(app_config, clients, backend)


@pytest.fixture
def call_tool(context):
    """Invoke a tool through the dispatch table; returns (is_error, decoded JSON body)."""

    async def _call(name, arguments=None):
        result = await context.dispatch_table.handle(name, arguments)
        assert len(result.content) == 1
        return result.isError, json.loads(result.content[0].text)

    return _call
