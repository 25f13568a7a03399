"""
Firebase Admin SDK bootstrap.

- Provides: initialize_firebase() -> FirebaseClients
- Credential priority: service account key file > Application Default Credentials
- Verifies credentials once at startup; a failure is fatal (ConfigurationError)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import firebase_admin
from firebase_admin import auth, credentials, firestore, storage

from .config import FirebaseConfig
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

APP_NAME = "firebase-mcp"


class UserDirectory:
    """Auth user lookups bound to one Firebase app."""

    def __init__(self, app: Any):
        self._app = app

    def get_user(self, uid: str):
        return auth.get_user(uid, app=self._app)

    def get_user_by_email(self, email: str):
        return auth.get_user_by_email(email, app=self._app)


class FirebaseClients:
    """
    Backend handles shared by all tools for the life of the process.

    The Storage bucket is resolved lazily so a project without Storage still
    serves the Firestore and Auth tools.
    """

    def __init__(self, db: Any, users: Any, bucket: Any = None, bucket_factory=None):
        self.db = db
        self.users = users
        self._bucket = bucket
        self._bucket_factory = bucket_factory

    @property
    def bucket(self) -> Any:
        if self._bucket is None:
            if self._bucket_factory is None:
                raise ConfigurationError(
                    "No Storage bucket configured. Set FIREBASE_STORAGE_BUCKET."
                )
            self._bucket = self._bucket_factory()
        return self._bucket


@dataclass
class ResolvedProject:
    project_id: Optional[str]
    storage_bucket: Optional[str]


def _load_credentials(config: FirebaseConfig):
    if config.service_account_key_path:
        key_path = Path(config.service_account_key_path).expanduser()
        logger.info("Initializing Firebase with service account key: %s", key_path)
        try:
            return credentials.Certificate(str(key_path))
        except (ValueError, OSError) as e:
            raise ConfigurationError(f"Invalid service account key {key_path}: {e}")
    logger.info("Initializing Firebase with ADC (Application Default Credentials)")
    return credentials.ApplicationDefault()


def _resolve_project(config: FirebaseConfig, cred: Any) -> ResolvedProject:
    project_id = config.project_id
    if not project_id:
        # ApplicationDefault resolves lazily; this is where missing ADC surfaces
        try:
            project_id = getattr(cred, "project_id", None)
        except Exception as e:
            raise ConfigurationError(f"Could not load Firebase credentials: {e}")
    bucket = config.storage_bucket
    if not bucket and project_id:
        bucket = f"{project_id}.firebasestorage.app"
    if bucket and bucket.startswith("gs://"):
        bucket = bucket[len("gs://"):]
    return ResolvedProject(project_id=project_id, storage_bucket=bucket)


def _using_emulator() -> bool:
    return bool(os.getenv("FIRESTORE_EMULATOR_HOST") or os.getenv("FIREBASE_AUTH_EMULATOR_HOST"))


def _verify(cred: Any) -> None:
    """Fetch one access token so bad credentials fail before serving requests."""
    try:
        cred.get_access_token()
    except Exception as e:
        raise ConfigurationError(f"Failed to authenticate Firebase service account: {e}")


def initialize_firebase(config: FirebaseConfig) -> FirebaseClients:
    """
    Initialize the Firebase app and return backend handles.

    Raises:
        ConfigurationError if credentials cannot be loaded or verified
    """
    try:
        app = firebase_admin.get_app(APP_NAME)
        logger.debug("Reusing initialized Firebase app")
        cred = app.credential
    except ValueError:
        app = None
        cred = _load_credentials(config)

    project = _resolve_project(config, cred)

    if config.verify_credentials and not _using_emulator():
        _verify(cred)
    elif _using_emulator():
        logger.info("Emulator detected; skipping credential verification")

    if app is None:
        options = {}
        if project.project_id:
            options["projectId"] = project.project_id
        if project.storage_bucket:
            options["storageBucket"] = project.storage_bucket
        try:
            app = firebase_admin.initialize_app(cred, options or None, name=APP_NAME)
        except (ValueError, OSError) as e:
            raise ConfigurationError(f"Failed to initialize Firebase: {e}")

    try:
        db = firestore.client(app)
    except Exception as e:
        raise ConfigurationError(f"Failed to create Firestore client: {e}")

    bucket_factory = None
    if project.storage_bucket:
        bucket_name = project.storage_bucket

        def bucket_factory():
            return storage.bucket(bucket_name, app=app)

    logger.info(
        "Firebase initialized (project=%s, bucket=%s)",
        project.project_id or getattr(db, "project", None),
        project.storage_bucket or "none",
    )
    return FirebaseClients(db=db, users=UserDirectory(app), bucket_factory=bucket_factory)
