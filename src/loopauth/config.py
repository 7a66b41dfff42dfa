"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for loopauth:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.loopauth/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **User config** -- A single :class:`~loopauth.models.LoginConfig` JSON
  file storing login defaults (client id, tenant, environment, timeouts).
* **Precedence resolution** -- :func:`resolve_config` merges CLI flags,
  environment variables, project-local config, and user config into the
  final effective configuration.
* **Environment lookup** -- :func:`resolve_environment` turns the
  configured environment name into endpoint URLs.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from loopauth.exceptions import ConfigError
from loopauth.models import BUILTIN_ENVIRONMENTS, AzureEnvironment, LoginConfig

_APP_NAME = "loopauth"
_CONFIG_FILENAME = "config.json"
_PROJECT_CONFIG_FILENAME = "loopauth.json"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG base directories (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/loopauth/`` (default ``~/.config/loopauth/``).
    On macOS/Windows: ``~/.loopauth/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/loopauth/`` (default ``~/.local/share/loopauth/``).
    On macOS/Windows: ``~/.loopauth/logs/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. On any failure the
    temp file is cleaned up.
    """
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
        fd = None  # prevent double-close in finally
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


# --- User config ---


def _config_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_config() -> LoginConfig:
    """Load the user configuration.

    Returns:
        The deserialised :class:`~loopauth.models.LoginConfig`, or a default
        instance when the file does not exist.

    Raises:
        ConfigError: If the file contains invalid JSON or fails validation.
    """
    path = _config_path()
    if not path.is_file():
        return LoginConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return LoginConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_config(config: LoginConfig) -> None:
    """Persist the user configuration atomically."""
    data = config.model_dump(mode="json")
    _atomic_write(_config_path(), json.dumps(data, indent=2) + "\n")


# --- Project-local config ---


def load_project_config() -> Optional[dict[str, Any]]:
    """Load project-local overrides from ``./loopauth.json``.

    Returns:
        The parsed JSON object, or ``None`` if the file does not exist.

    Raises:
        ConfigError: If the file exists but is not a JSON object.
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


# --- Precedence resolution ---

_ENV_OVERRIDES = {
    "client_id": "LOOPAUTH_CLIENT_ID",
    "tenant": "LOOPAUTH_TENANT",
    "environment": "LOOPAUTH_ENVIRONMENT",
}


def resolve_config(
    cli_client_id: Optional[str] = None,
    cli_tenant: Optional[str] = None,
    cli_environment: Optional[str] = None,
    cli_adfs: Optional[bool] = None,
) -> LoginConfig:
    """Resolve the effective login configuration.

    Precedence (high to low):
        1. CLI flags
        2. Environment variables (``LOOPAUTH_CLIENT_ID``, ``LOOPAUTH_TENANT``,
           ``LOOPAUTH_ENVIRONMENT``)
        3. Project config (``./loopauth.json``)
        4. User config (``~/.config/loopauth/config.json``)
        5. Defaults

    Raises:
        ConfigError: If any layer is invalid.
    """
    # 5 + 4
    data = load_config().model_dump()

    # 3
    project = load_project_config()
    if project is not None:
        data.update(project)

    # 2
    for field_name, env_var in _ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            data[field_name] = value

    # 1
    cli = {
        "client_id": cli_client_id,
        "tenant": cli_tenant,
        "environment": cli_environment,
        "adfs": cli_adfs,
    }
    data.update({k: v for k, v in cli.items() if v is not None})

    try:
        return LoginConfig.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


def resolve_environment(config: LoginConfig) -> AzureEnvironment:
    """Return the endpoints for ``config.environment``.

    ``"custom"`` builds an environment from ``custom_endpoint_url`` and
    ``custom_resource_id``.

    Raises:
        ConfigError: For an unknown name or an incomplete custom environment.
    """
    if config.environment == "custom":
        if not config.custom_endpoint_url or not config.custom_resource_id:
            raise ConfigError(
                "Custom environment requires 'custom_endpoint_url' and 'custom_resource_id'"
            )
        return AzureEnvironment(
            name="custom",
            active_directory_endpoint_url=config.custom_endpoint_url,
            active_directory_resource_id=config.custom_resource_id,
        )

    env = BUILTIN_ENVIRONMENTS.get(config.environment)
    if env is None:
        known = ", ".join(sorted(BUILTIN_ENVIRONMENTS))
        raise ConfigError(
            f"Unknown environment '{config.environment}' (known: {known}, custom)"
        )
    return env
