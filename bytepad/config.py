"""
Configuration management for the bytepad automation server.

The configuration is stored as a TOML file in the data directory.
It locates the desktop app's local API and the remote Gist API, and sets
the timeouts and cache lifetimes used when talking to them.

Sync settings (token, gist id, auto-sync) live separately in
gist-config.json; see file_store.SyncConfigStore.
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

import tomli_w


CONFIG_FILENAME = "bytepad.toml"
CONFIG_VERSION = 1

DEFAULT_LOCAL_API_URL = "http://127.0.0.1:31337"
DEFAULT_GIST_API_URL = "https://api.github.com"
DEFAULT_GIST_FILENAME = "bytepad-data.json"

# Environment variables
ENV_DATA_DIR = "BYTEPAD_DATA_DIR"
ENV_DATA_DIR_LEGACY = "DATA_DIR"
ENV_LOCAL_API_URL = "BYTEPAD_LOCAL_API_URL"
ENV_LOCAL_API_URL_LEGACY = "LOCAL_API_URL"
ENV_GIST_API_URL = "BYTEPAD_GIST_API_URL"
ENV_TOKEN = "GITHUB_TOKEN"
ENV_GIST_ID = "GIST_ID"

LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "::1")


@dataclass
class LocalApiConfig:
    """Where and how to reach the desktop app's local API."""
    url: str = DEFAULT_LOCAL_API_URL
    health_path: str = "/api/health"
    request_timeout: float = 5.0
    health_timeout: float = 2.0
    health_cache_seconds: float = 30.0


@dataclass
class RemoteConfig:
    """The hosted document API used as the remote mirror."""
    api_url: str = DEFAULT_GIST_API_URL
    timeout: float = 10.0
    filename: str = DEFAULT_GIST_FILENAME


@dataclass
class ServerConfig:
    """Complete server configuration."""
    data_dir: Path
    version: int = CONFIG_VERSION
    local_api: LocalApiConfig = field(default_factory=LocalApiConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    dedup_ttl_seconds: float = 300.0

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.data_dir / CONFIG_FILENAME

    @property
    def data_path(self) -> Path:
        return self.data_dir / "bytepad-data.json"

    @property
    def sync_config_path(self) -> Path:
        return self.data_dir / "gist-config.json"


def get_data_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    """
    Resolve the data directory.

    Priority: BYTEPAD_DATA_DIR, DATA_DIR, then ~/.bytepad.
    """
    env = os.environ if env is None else env
    value = env.get(ENV_DATA_DIR) or env.get(ENV_DATA_DIR_LEGACY)
    if value:
        return Path(value).expanduser().resolve()
    return Path.home() / ".bytepad"


def require_secure_url(url: str, what: str) -> str:
    """Refuse non-HTTPS URLs unless they point at the loopback interface.

    A bearer token sent over plain HTTP to a remote host travels in cleartext.
    """
    url = url.rstrip("/")
    if not url.startswith("https://"):
        host = urlparse(url).hostname or ""
        if host not in LOOPBACK_HOSTS:
            raise ValueError(
                f"{what} URL must use HTTPS (got {url}). "
                "Use HTTPS to protect credentials, or use localhost for local development."
            )
    return url


def apply_env_overrides(
    config: ServerConfig, env: Optional[Mapping[str, str]] = None,
) -> ServerConfig:
    """Apply environment overrides on top of file-based settings."""
    env = os.environ if env is None else env
    local_url = env.get(ENV_LOCAL_API_URL) or env.get(ENV_LOCAL_API_URL_LEGACY)
    if local_url:
        config.local_api.url = local_url.rstrip("/")
    gist_url = env.get(ENV_GIST_API_URL)
    if gist_url:
        config.remote.api_url = gist_url.rstrip("/")
    return config


def _positive(section: Mapping[str, Any], key: str, default: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"Config value '{key}' must be a positive number (got {value!r})")
    return float(value)


def load_config(data_dir: Path) -> ServerConfig:
    """
    Load configuration from a data directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = data_dir / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    local = data.get("local_api", {})
    remote = data.get("remote", {})
    commands = data.get("commands", {})

    return ServerConfig(
        data_dir=data_dir,
        version=version,
        local_api=LocalApiConfig(
            url=str(local.get("url", DEFAULT_LOCAL_API_URL)).rstrip("/"),
            health_path=str(local.get("health_path", "/api/health")),
            request_timeout=_positive(local, "request_timeout", 5.0),
            health_timeout=_positive(local, "health_timeout", 2.0),
            health_cache_seconds=_positive(local, "health_cache_seconds", 30.0),
        ),
        remote=RemoteConfig(
            api_url=str(remote.get("api_url", DEFAULT_GIST_API_URL)).rstrip("/"),
            timeout=_positive(remote, "timeout", 10.0),
            filename=str(remote.get("filename", DEFAULT_GIST_FILENAME)),
        ),
        dedup_ttl_seconds=_positive(commands, "dedup_ttl_seconds", 300.0),
    )


def save_config(config: ServerConfig) -> None:
    """
    Save configuration to the data directory.

    Creates the directory if it doesn't exist.
    """
    config.data_dir.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
        },
        "local_api": {
            "url": config.local_api.url,
            "health_path": config.local_api.health_path,
            "request_timeout": config.local_api.request_timeout,
            "health_timeout": config.local_api.health_timeout,
            "health_cache_seconds": config.local_api.health_cache_seconds,
        },
        "remote": {
            "api_url": config.remote.api_url,
            "timeout": config.remote.timeout,
            "filename": config.remote.filename,
        },
        "commands": {
            "dedup_ttl_seconds": config.dedup_ttl_seconds,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(
    data_dir: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ServerConfig:
    """
    Load existing config or create a new one with defaults, then apply
    environment overrides.

    This is the main entry point for config management.
    """
    if data_dir is None:
        data_dir = get_data_dir(env)
    config_path = data_dir / CONFIG_FILENAME

    if config_path.exists():
        config = load_config(data_dir)
    else:
        config = ServerConfig(data_dir=data_dir)
        save_config(config)
    return apply_env_overrides(config, env)
