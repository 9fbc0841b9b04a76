"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for tadometrics:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.tadometrics/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Exporter config** -- A single :class:`~tadometrics.models.ExporterConfig`
  JSON file storing the home id, identity provider settings and timing.
* **Precedence resolution** -- :func:`resolve_config` merges CLI flags,
  environment variables and the config file into the effective
  configuration.
* **Credential resolution** -- :func:`resolve_credential` reads secrets
  (password-grant username, password, client secret) from env vars, files
  or interactive prompts.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import sys
import tempfile
from pathlib import Path
from typing import Optional

from tadometrics.exceptions import ConfigError
from tadometrics.models import ExporterConfig

_APP_NAME = "tadometrics"
_CONFIG_FILENAME = "config.json"
_STATE_FILENAME = "state.json"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
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

    On Linux/BSD: ``$XDG_CONFIG_HOME/tadometrics/`` (default
    ``~/.config/tadometrics/``). On macOS/Windows: ``~/.tadometrics/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CONFIG_HOME", (".config",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (credential state, crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/tadometrics/`` (default
    ``~/.local/share/tadometrics/``). On macOS/Windows: ``~/.tadometrics/data/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_DATA_HOME", (".local", "share"))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def default_state_path() -> Path:
    """Return the default credential state file path under the data directory."""
    return get_data_dir() / _STATE_FILENAME


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    On success the temp file is renamed over *path*; on any failure the temp
    file is cleaned up and the exception re-raised.

    Args:
        path: Destination file.
        data: Text content to write.
        mode: Optional permission bits applied to the temp file before any
            content is written (e.g. ``0o600`` for secrets).
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
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in the except branch
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Exporter config ---


def config_path() -> Path:
    """Path to the config file, honouring ``$TADO_CONFIG``."""
    env_path = os.environ.get("TADO_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return get_config_dir() / _CONFIG_FILENAME


def load_config(path: Optional[Path] = None) -> ExporterConfig:
    """Load the exporter configuration.

    Args:
        path: Explicit config file. Defaults to :func:`config_path`.

    Returns:
        The deserialised :class:`~tadometrics.models.ExporterConfig`. If
        the file does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = path or config_path()
    if not path.is_file():
        return ExporterConfig()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return ExporterConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_config(config: ExporterConfig, path: Optional[Path] = None) -> None:
    """Persist the exporter configuration atomically to disk.

    Args:
        config: The configuration to save.
        path: Explicit config file. Defaults to :func:`config_path`.
    """
    data = config.model_dump(mode="json")
    atomic_write(path or config_path(), json.dumps(data, indent=2) + "\n")


# --- Precedence resolution ---


def resolve_config(
    cli_config: Optional[str] = None,
    cli_home_id: Optional[str] = None,
    cli_state_file: Optional[str] = None,
    cli_format: Optional[str] = None,
) -> ExporterConfig:
    """Resolve config with full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_home_id``, ``cli_state_file``, ``cli_format``)
        2. Environment variables (``TADO_HOME_ID``, ``TADO_CLIENT_ID``,
           ``TADO_STATE_FILE``)
        3. Config file (``--config`` > ``$TADO_CONFIG`` >
           ``~/.config/tadometrics/config.json``)
        4. Defaults

    The returned config always has ``state_file`` set.

    Returns:
        The effective :class:`~tadometrics.models.ExporterConfig`.
    """
    # 4 + 3. File config (fills in defaults automatically)
    path = Path(cli_config).expanduser() if cli_config else None
    config = load_config(path)

    # 2. Environment variables
    env_home = os.environ.get("TADO_HOME_ID")
    if env_home:
        config.home_id = env_home
    env_client = os.environ.get("TADO_CLIENT_ID")
    if env_client:
        config.client_id = env_client
    env_state = os.environ.get("TADO_STATE_FILE")
    if env_state:
        config.state_file = env_state

    # 1. CLI flags (highest precedence)
    if cli_home_id is not None:
        config.home_id = cli_home_id
    if cli_state_file is not None:
        config.state_file = cli_state_file
    if cli_format is not None:
        config.output.format = cli_format

    if not config.state_file:
        config.state_file = str(default_state_path())
    return config


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts user interactively (requires a TTY)

    Args:
        source: The source descriptor string.

    Returns:
        The resolved credential string.

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
        file_path = source[5:]
        path = Path(file_path).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigError(
                "Cannot prompt for credentials: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass("Enter credential: ")

    raise ConfigError(f"Unknown credential source format: {source}")
