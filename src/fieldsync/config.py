"""Configuration management with XDG paths, atomic writes, and precedence resolution.

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.fieldsync/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_cache_dir`, :func:`get_data_dir`.
* **Worker config** -- a single :class:`~fieldsync.models.WorkerConfig`
  JSON file holding tier budgets, routing patterns, timeouts, and retry
  policy.
* **Precedence resolution** -- :func:`resolve_config` layers CLI flags,
  environment variables, and the project-local ``fieldsync.json`` over the
  user config.

Cached response blobs live under the cache directory and may be deleted at
any time; the durable mutation queue lives under the data directory
because deleting it loses unsynced inspection work.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from fieldsync.exceptions import ConfigError
from fieldsync.models import WorkerConfig

_APP_NAME = "fieldsync"
_CONFIG_FILENAME = "config.json"
_PROJECT_CONFIG_FILENAME = "fieldsync.json"

ENV_BACKEND_HOST = "FIELDSYNC_BACKEND_HOST"
ENV_DATA_DIR = "FIELDSYNC_DATA_DIR"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform uses the XDG Base Directory layout (Linux/BSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/fieldsync/`` (default ``~/.config/fieldsync/``).
    On macOS/Windows: ``~/.fieldsync/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_dir() -> Path:
    """Return the directory holding the cache tiers, creating it if necessary.

    On Linux/BSD: ``$XDG_CACHE_HOME/fieldsync/`` (default ``~/.cache/fieldsync/``).
    On macOS/Windows: ``~/.fieldsync/cache/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CACHE_HOME", (".cache",)) / _APP_NAME
    else:
        path = _fallback_base_dir() / "cache"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (mutation queue, crash logs), creating it if necessary.

    ``$FIELDSYNC_DATA_DIR`` takes precedence. Otherwise on Linux/BSD:
    ``$XDG_DATA_HOME/fieldsync/`` (default ``~/.local/share/fieldsync/``);
    on macOS/Windows: ``~/.fieldsync/data/``.
    """
    override = os.environ.get(ENV_DATA_DIR, "")
    if override:
        path = Path(override)
    elif _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write *data* to *path* atomically using a sibling temp file and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Worker config ---


def config_path() -> Path:
    """Path to the user config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_worker_config() -> WorkerConfig:
    """Load the user configuration.

    Returns:
        The deserialised :class:`~fieldsync.models.WorkerConfig`, or a
        default instance when the file does not exist.

    Raises:
        ConfigError: If the file contains invalid JSON or fails validation.
    """
    path = config_path()
    if not path.is_file():
        return WorkerConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return WorkerConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_worker_config(config: WorkerConfig) -> None:
    """Persist *config* atomically to the user config file."""
    data = config.model_dump(mode="json")
    _atomic_write(config_path(), json.dumps(data, indent=2) + "\n")


def load_project_config() -> Optional[dict[str, Any]]:
    """Load the project-local ``./fieldsync.json`` overrides.

    Returns:
        The parsed JSON object, or ``None`` if the file does not exist.

    Raises:
        ConfigError: If the file is not a valid JSON object.
    """
    path = Path.cwd() / _PROJECT_CONFIG_FILENAME
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid project config at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Project config at {path} must be a JSON object")
    return data


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def resolve_config(cli_backend_host: Optional[str] = None) -> WorkerConfig:
    """Resolve the effective worker configuration.

    Precedence (high to low):
        1. CLI flags (``cli_backend_host``)
        2. Environment variables (``FIELDSYNC_BACKEND_HOST``)
        3. Project config (``./fieldsync.json``, deep-merged)
        4. User config (``~/.config/fieldsync/config.json``)
        5. Defaults

    Raises:
        ConfigError: If any layer is invalid.
    """
    config = load_worker_config()

    project = load_project_config()
    if project is not None:
        merged = _deep_merge(config.model_dump(mode="json"), project)
        try:
            config = WorkerConfig.model_validate(merged)
        except ValueError as exc:
            raise ConfigError(f"Invalid project config: {exc}") from exc

    env_host = os.environ.get(ENV_BACKEND_HOST)
    if env_host:
        config.router.backend_host = env_host
    if cli_backend_host is not None:
        config.router.backend_host = cli_backend_host

    return config
