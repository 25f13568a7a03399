"""Configuration loader: YAML file with environment variable overrides."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .errors import ConfigurationError

DEFAULT_CONFIG_FILE = "firebase-mcp.yaml"
DEFAULT_DEBUG_LOG = "~/.firebase-mcp/debug.log"

TRUE_VALUES = ("1", "true", "yes", "on")
FALSE_VALUES = ("0", "false", "no", "off")


@dataclass
class ServerConfig:
    """Transport and logging settings."""

    transport: str = "stdio"
    host: str = "127.0.0.1"
    port: int = 3000
    path: str = "/mcp"
    log_level: str = "info"
    log_format: str = "text"
    log_file: Optional[str] = None

    def validate(self) -> None:
        if self.transport not in ("stdio", "http"):
            raise ConfigurationError(f"Invalid transport: {self.transport} (expected 'stdio' or 'http')")
        if not (1 <= self.port <= 65535):
            raise ConfigurationError(f"Invalid port: {self.port}")
        if not self.path.startswith("/"):
            raise ConfigurationError(f"HTTP path must start with '/': {self.path}")
        if self.log_level.lower() not in ("debug", "info", "warning", "error", "critical"):
            raise ConfigurationError(f"Invalid log level: {self.log_level}")
        if self.log_format not in ("text", "json"):
            raise ConfigurationError(f"Invalid log format: {self.log_format}")


@dataclass
class FirebaseConfig:
    """Backend project and credential settings."""

    service_account_key_path: Optional[str] = None
    storage_bucket: Optional[str] = None
    project_id: Optional[str] = None
    verify_credentials: bool = True

    def validate(self) -> None:
        if self.service_account_key_path:
            key_path = Path(self.service_account_key_path).expanduser()
            if not key_path.is_file():
                raise ConfigurationError(f"Service account key not found: {key_path}")


@dataclass
class BackendConfig:
    """Per-call timeout and retry policy for Admin SDK calls."""

    timeout: float = 30.0
    max_retries: int = 3
    initial_backoff: float = 0.5
    max_backoff: float = 8.0
    signed_url_ttl: int = 3600

    def validate(self) -> None:
        if self.timeout <= 0:
            raise ConfigurationError("backend.timeout must be positive")
        if self.max_retries < 0:
            raise ConfigurationError("backend.max_retries cannot be negative")
        if self.initial_backoff < 0 or self.max_backoff < self.initial_backoff:
            raise ConfigurationError("backend backoff must satisfy 0 <= initial_backoff <= max_backoff")
        if self.signed_url_ttl <= 0:
            raise ConfigurationError("backend.signed_url_ttl must be positive")


@dataclass
class AuditConfig:
    """Audit trail for mutating tools."""

    path: Optional[str] = None


@dataclass
class AppConfig:
    """Root configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    firebase: FirebaseConfig = field(default_factory=FirebaseConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)

    def validate(self) -> None:
        self.server.validate()
        self.firebase.validate()
        self.backend.validate()


def _parse_bool(name: str, raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def _parse_number(name: str, raw: Any, kind: type) -> Any:
    try:
        return kind(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a {kind.__name__}, got {raw!r}")


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"'{name}' section in config file must be a mapping")
    return section


def _apply_file(cfg: AppConfig, data: Dict[str, Any]) -> None:
    srv = _section(data, "server")
    cfg.server.transport = srv.get("transport", cfg.server.transport)
    cfg.server.host = srv.get("host", cfg.server.host)
    cfg.server.port = _parse_number("server.port", srv.get("port", cfg.server.port), int)
    cfg.server.path = srv.get("path", cfg.server.path)
    cfg.server.log_level = srv.get("log_level", cfg.server.log_level)
    cfg.server.log_format = srv.get("log_format", cfg.server.log_format)
    cfg.server.log_file = srv.get("log_file", cfg.server.log_file)

    fb = _section(data, "firebase")
    cfg.firebase.service_account_key_path = fb.get(
        "service_account_key_path", cfg.firebase.service_account_key_path
    )
    cfg.firebase.storage_bucket = fb.get("storage_bucket", cfg.firebase.storage_bucket)
    cfg.firebase.project_id = fb.get("project_id", cfg.firebase.project_id)
    if "verify_credentials" in fb:
        cfg.firebase.verify_credentials = _parse_bool("firebase.verify_credentials", fb["verify_credentials"])

    backend = _section(data, "backend")
    cfg.backend.timeout = _parse_number("backend.timeout", backend.get("timeout", cfg.backend.timeout), float)
    cfg.backend.max_retries = _parse_number(
        "backend.max_retries", backend.get("max_retries", cfg.backend.max_retries), int
    )
    cfg.backend.initial_backoff = _parse_number(
        "backend.initial_backoff", backend.get("initial_backoff", cfg.backend.initial_backoff), float
    )
    cfg.backend.max_backoff = _parse_number(
        "backend.max_backoff", backend.get("max_backoff", cfg.backend.max_backoff), float
    )
    cfg.backend.signed_url_ttl = _parse_number(
        "backend.signed_url_ttl", backend.get("signed_url_ttl", cfg.backend.signed_url_ttl), int
    )

    audit = _section(data, "audit")
    cfg.audit.path = audit.get("path", cfg.audit.path)


def _apply_env_overrides(cfg: AppConfig) -> None:
    """Apply environment variable overrides. ENV beats the config file."""
    if os.getenv("MCP_TRANSPORT"):
        cfg.server.transport = os.environ["MCP_TRANSPORT"].strip().lower()
    if os.getenv("MCP_HTTP_HOST"):
        cfg.server.host = os.environ["MCP_HTTP_HOST"]
    if os.getenv("MCP_HTTP_PORT"):
        cfg.server.port = _parse_number("MCP_HTTP_PORT", os.environ["MCP_HTTP_PORT"], int)
    if os.getenv("MCP_HTTP_PATH"):
        cfg.server.path = os.environ["MCP_HTTP_PATH"]
    if os.getenv("FIREBASE_MCP_LOG_LEVEL"):
        cfg.server.log_level = os.environ["FIREBASE_MCP_LOG_LEVEL"].lower()
    if os.getenv("FIREBASE_MCP_LOG_FORMAT"):
        cfg.server.log_format = os.environ["FIREBASE_MCP_LOG_FORMAT"].lower()

    # DEBUG_LOG_FILE=true logs to the default location; any other value is a path
    debug_log = os.getenv("DEBUG_LOG_FILE")
    if debug_log:
        if debug_log.strip().lower() in TRUE_VALUES:
            cfg.server.log_file = DEFAULT_DEBUG_LOG
        elif debug_log.strip().lower() not in FALSE_VALUES:
            cfg.server.log_file = debug_log

    if os.getenv("SERVICE_ACCOUNT_KEY_PATH"):
        cfg.firebase.service_account_key_path = os.environ["SERVICE_ACCOUNT_KEY_PATH"]
    if os.getenv("FIREBASE_STORAGE_BUCKET"):
        cfg.firebase.storage_bucket = os.environ["FIREBASE_STORAGE_BUCKET"]
    if os.getenv("GOOGLE_CLOUD_PROJECT"):
        cfg.firebase.project_id = os.environ["GOOGLE_CLOUD_PROJECT"]
    if os.getenv("FIREBASE_MCP_VERIFY_CREDENTIALS"):
        cfg.firebase.verify_credentials = _parse_bool(
            "FIREBASE_MCP_VERIFY_CREDENTIALS", os.environ["FIREBASE_MCP_VERIFY_CREDENTIALS"]
        )

    if os.getenv("FIREBASE_MCP_TIMEOUT"):
        cfg.backend.timeout = _parse_number("FIREBASE_MCP_TIMEOUT", os.environ["FIREBASE_MCP_TIMEOUT"], float)
    if os.getenv("FIREBASE_MCP_MAX_RETRIES"):
        cfg.backend.max_retries = _parse_number(
            "FIREBASE_MCP_MAX_RETRIES", os.environ["FIREBASE_MCP_MAX_RETRIES"], int
        )

    if os.getenv("FIREBASE_MCP_AUDIT_LOG"):
        cfg.audit.path = os.environ["FIREBASE_MCP_AUDIT_LOG"]


def _find_config_file(config_path: Union[str, Path, None]) -> Optional[Path]:
    if config_path is not None:
        path = Path(config_path).expanduser()
        if not path.is_file():
            raise ConfigurationError(f"Config file not found: {path}")
        return path
    if os.getenv("FIREBASE_MCP_CONFIG"):
        path = Path(os.environ["FIREBASE_MCP_CONFIG"]).expanduser()
        if not path.is_file():
            raise ConfigurationError(f"Config file not found: {path}")
        return path
    default = Path(DEFAULT_CONFIG_FILE)
    return default if default.is_file() else None


def load_config(config_path: Union[str, Path, None] = None) -> AppConfig:
    """
    Load configuration.

    Precedence: ENV -> YAML file -> defaults

    Args:
        config_path: Path to a YAML config file. If None, uses
            FIREBASE_MCP_CONFIG, then ./firebase-mcp.yaml when present.

    Returns:
        Validated AppConfig

    Raises:
        ConfigurationError on unreadable files or invalid values
    """
    cfg = AppConfig()

    path = _find_config_file(config_path)
    if path is not None:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        _apply_file(cfg, data)

    _apply_env_overrides(cfg)
    cfg.validate()
    return cfg
