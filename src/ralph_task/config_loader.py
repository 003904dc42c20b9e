"""
Configuration loader for ralph-task.

Finds the config file, parses it with PyYAML (JSON is accepted as a YAML
subset), interpolates environment variables, fills Trello credentials
from the environment, resolves relative paths against the config file's
directory, and validates the result.

Usage:
    from ralph_task.config_loader import load_config

    config = load_config()                      # discovered
    config = load_config(Path("ralph.yml"))     # explicit
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .config_schema import ConfigError, RalphTaskConfig, build_config
from .file_handler import read_file_with_encoding

logger = logging.getLogger(__name__)

__all__ = [
    "CONFIG_FILENAMES",
    "ConfigError",
    "discover_config_files",
    "interpolate_env_vars",
    "load_config",
    "resolve_config_path",
]

CONFIG_ENV_VAR = "RALPH_TASK_CONFIG"
CONFIG_FILENAMES = (".ralphtask.json", ".ralphtask.yml", ".ralphtask.yaml")

# Config key -> environment variable used when the key is absent.
_TRELLO_ENV_FALLBACKS = {
    "apiKey": "TRELLO_API_KEY",
    "token": "TRELLO_TOKEN",
    "boardId": "TRELLO_BOARD_ID",
}

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# Matches ${VAR} and ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` patterns with env values.

    * ``${VAR}`` is replaced with ``os.environ.get(VAR, "")``.
    * ``${VAR:-default}`` uses *default* when VAR is unset or empty.
    * Literal ``${`` with no closing ``}`` is left untouched.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    """Walk a nested dict/list and interpolate env vars in all strings."""
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _interpolate_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# 2. Convention-based file discovery
# ---------------------------------------------------------------------------


def discover_config_files(cwd: Path | None = None) -> list[Path]:
    """Return existing config file paths in precedence order (highest first).

    Search order:
        1. ``RALPH_TASK_CONFIG`` env var (explicit single path).
        2. ``.ralphtask.json`` in CWD.
        3. ``.ralphtask.yml`` in CWD.
        4. ``.ralphtask.yaml`` in CWD.

    Only paths that exist on disk are returned.
    """
    cwd = cwd or Path.cwd()
    candidates: list[Path] = []

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())

    candidates.extend(cwd / name for name in CONFIG_FILENAMES)
    return [p for p in candidates if p.exists()]


def resolve_config_path(
    config_path: Path | str | None = None, cwd: Path | None = None
) -> Path:
    """Return the single config file path that should be used.

    An explicit *config_path* wins (resolved against *cwd*).  Otherwise
    the highest-precedence discovered file, or ``CWD / .ralphtask.json``
    when none exists.
    """
    cwd = cwd or Path.cwd()
    if config_path is not None:
        path = Path(config_path).expanduser()
        return path if path.is_absolute() else (cwd / path).resolve()
    existing = discover_config_files(cwd)
    if existing:
        return existing[0]
    return cwd / CONFIG_FILENAMES[0]


# ---------------------------------------------------------------------------
# 3. Loading
# ---------------------------------------------------------------------------


def _read_raw(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        content, _encoding = read_file_with_encoding(path)
    except OSError as exc:
        raise ConfigError(f"Unable to read config at {path}: {exc}") from exc
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Invalid config at {path}: expected a mapping, "
            f"got {type(data).__name__}"
        )
    return data


def _apply_env_fallbacks(raw: dict[str, Any]) -> dict[str, Any]:
    trello = raw.get("trello")
    if trello is None:
        trello = {}
    if not isinstance(trello, dict):
        return raw
    trello = dict(trello)
    for key, env_name in _TRELLO_ENV_FALLBACKS.items():
        if not trello.get(key) and os.environ.get(env_name):
            trello[key] = os.environ[env_name]
    return {**raw, "trello": trello}


def _resolve_paths(raw: dict[str, Any], base_dir: Path) -> dict[str, Any]:
    paths = raw.get("paths")
    if not isinstance(paths, dict):
        return raw
    resolved = dict(paths)
    for key in ("prdFile", "stateFile"):
        value = resolved.get(key)
        if isinstance(value, str) and value.strip():
            candidate = Path(value).expanduser()
            if not candidate.is_absolute():
                candidate = base_dir / candidate
            resolved[key] = str(candidate.resolve())
    if "stateFile" not in resolved:
        resolved["stateFile"] = str((base_dir / ".ralph-task" / "state.json").resolve())
    return {**raw, "paths": resolved}


def load_config(
    config_path: Path | str | None = None,
    cwd: Path | None = None,
    *,
    load_env: bool = True,
) -> RalphTaskConfig:
    """Load, interpolate and validate the config file.

    Args:
        config_path: Explicit config file; discovered when ``None``.
        cwd: Directory used for discovery and relative *config_path*.
        load_env: Load a ``.env`` file from *cwd* first.

    Returns:
        Validated ``RalphTaskConfig`` with absolute file paths.

    Raises:
        ConfigError: If the file is missing, unparsable or invalid.
    """
    cwd = cwd or Path.cwd()
    if load_env:
        load_dotenv(cwd / ".env", override=False)

    path = resolve_config_path(config_path, cwd)
    logger.debug("Loading config: %s", path)

    raw = _interpolate_recursive(_read_raw(path))
    raw = _apply_env_fallbacks(raw)
    raw = _resolve_paths(raw, path.parent.resolve())
    return build_config(raw)
