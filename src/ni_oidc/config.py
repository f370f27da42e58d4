"""Settings persistence for ni_oidc.

Provider settings live in one JSON file holding a
:class:`~ni_oidc.models.ProviderConfig`. Because it carries the client
secret, it is written atomically with ``0o600`` permissions.

Resolution order, highest first:

1. ``NI_OIDC_*`` environment variables (:data:`_ENV_OVERRIDES`)
2. the settings file at :func:`config_path`
3. model defaults

Directories follow the XDG Base Directory layout on Linux and the BSDs
and fall back to ``~/.ni-oidc/`` elsewhere:

========  ===============================  =======================
kind      XDG                              fallback
========  ===============================  =======================
config    ``$XDG_CONFIG_HOME/ni-oidc``     ``~/.ni-oidc``
cache     ``$XDG_CACHE_HOME/ni-oidc``      ``~/.ni-oidc/cache``
data      ``$XDG_DATA_HOME/ni-oidc``       ``~/.ni-oidc/logs``
========  ===============================  =======================
"""

from __future__ import annotations

import json
import os
import platform
from pathlib import Path
from typing import Any, Optional

from ni_oidc.exceptions import ConfigError
from ni_oidc.models import ProviderConfig

_APP_NAME = "ni-oidc"
_CONFIG_FILENAME = "config.json"

ENV_CONFIG_PATH = "NI_OIDC_CONFIG"

# Environment variable -> ProviderConfig field.
_ENV_OVERRIDES = {
    "NI_OIDC_PROVIDER_URL": "provider_url",
    "NI_OIDC_CLIENT_ID": "client_id",
    "NI_OIDC_CLIENT_SECRET": "client_secret",
    "NI_OIDC_BASE_URL": "base_url",
    "NI_OIDC_SCOPES": "scopes",
}

# kind -> (XDG variable, default under $HOME, subdirectory of the fallback dir)
_DIRECTORY_KINDS = {
    "config": ("XDG_CONFIG_HOME", ".config", ""),
    "cache": ("XDG_CACHE_HOME", ".cache", "cache"),
    "data": ("XDG_DATA_HOME", ".local/share", "logs"),
}


def _is_xdg_platform() -> bool:
    system = platform.system()
    return system == "Linux" or system.endswith("BSD")


def _app_dir(kind: str) -> Path:
    """Return (and create) the application directory of the given *kind*."""
    env_var, home_default, fallback_sub = _DIRECTORY_KINDS[kind]
    if _is_xdg_platform():
        base = Path(os.environ.get(env_var) or Path.home() / home_default)
        path = base / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}"
        if fallback_sub:
            path = path / fallback_sub
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_config_dir() -> Path:
    return _app_dir("config")


def get_cache_dir() -> Path:
    """Directory of the shared discovery cache. Safe to delete at any time."""
    return _app_dir("cache")


def get_data_dir() -> Path:
    """Directory for crash logs."""
    return _app_dir("data")


def _atomic_write(path: Path, data: str, mode: int = 0o600) -> None:
    """Replace *path* with *data* without ever exposing a partial file.

    The temporary file is created next to *path* with *mode* already
    applied, then renamed over it.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


# --- Provider settings ---


def config_path(path: Optional[str | Path] = None) -> Path:
    """Return the settings file path.

    Precedence: explicit *path* > ``NI_OIDC_CONFIG`` > default location.
    """
    if path is not None:
        return Path(path).expanduser()
    env_path = os.environ.get(ENV_CONFIG_PATH)
    if env_path:
        return Path(env_path).expanduser()
    return get_config_dir() / _CONFIG_FILENAME


def load_settings_data(path: Optional[str | Path] = None) -> dict[str, Any]:
    """Load the raw settings dict from disk, without env overrides.

    Returns:
        The parsed JSON object, or an empty dict if the file does not exist.

    Raises:
        ConfigError: If the file exists but is not a JSON object.
    """
    target = config_path(path)
    if not target.is_file():
        return {}
    try:
        data = json.loads(target.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        raise ConfigError(f"Invalid settings file at {target}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid settings file at {target}: expected a JSON object")
    return data


def load_provider_config(path: Optional[str | Path] = None) -> ProviderConfig:
    """Load provider settings with full precedence resolution.

    Precedence (high to low):
        1. ``NI_OIDC_*`` environment variables
        2. The settings file (see :func:`config_path`)
        3. Model defaults

    When ``client_secret`` is empty and ``client_secret_source`` is set,
    the secret is resolved through :func:`resolve_credential`.

    Raises:
        ConfigError: If the file is invalid, fails validation, or the
            secret source cannot be resolved.
    """
    data = load_settings_data(path)

    for env_var, field_name in _ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            data[field_name] = value

    if not data.get("client_secret") and data.get("client_secret_source"):
        data["client_secret"] = resolve_credential(data["client_secret_source"])

    try:
        return ProviderConfig.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid provider settings: {exc}") from exc


def save_provider_config(config: ProviderConfig, path: Optional[str | Path] = None) -> Path:
    """Persist provider settings atomically with ``0o600`` permissions.

    A secret that came from ``client_secret_source`` is not written back
    to the file.

    Returns:
        The path written to.
    """
    data = config.model_dump(mode="json")
    if config.client_secret_source:
        data["client_secret"] = ""
    target = config_path(path)
    _atomic_write(target, json.dumps(data, indent=2) + "\n")
    return target


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    raise ConfigError(f"Unknown credential source format: {source}")
