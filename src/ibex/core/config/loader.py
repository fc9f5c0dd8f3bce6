"""
Configuration loading with multi-layer merging.

Precedence chain:
    defaults < user config < project config < env vars
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from ibex.core.paths import CONFIG_FILE, ibex_dir

from .models import IbexConfig

logger = logging.getLogger(__name__)

# Global cache to avoid reloading config multiple times per invocation
_config_cache: IbexConfig | None = None

_TRUE_STRINGS = ("1", "true", "yes", "on")


def get_xdg_config_home() -> Path:
    """Get XDG config home directory (defaults to ~/.config)."""
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_user_config_path() -> Path:
    """Path to ~/.config/ibex/config.json (or XDG equivalent)."""
    return get_xdg_config_home() / "ibex" / "config.json"


def get_project_config_path(project_dir: Path | None = None) -> Path:
    """Path to .ibex/config.json in the project root."""
    return ibex_dir(project_dir or Path.cwd()) / CONFIG_FILE


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries; values in ``override`` win.

    Example:
        >>> deep_merge({"a": 1, "b": {"x": 10, "y": 20}}, {"b": {"y": 30}})
        {'a': 1, 'b': {'x': 10, 'y': 30}}
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_json_file(path: Path) -> dict[str, Any] | None:
    """Load a JSON object file; None if missing or invalid."""
    if not path.exists():
        return None
    try:
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to parse config at %s: %s", path, e)
        return None
    return data if isinstance(data, dict) else None


def _set(result: dict[str, Any], section: str, key: str, value: Any) -> None:
    result.setdefault(section, {})
    result[section][key] = value


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides.

    Supported env vars:
        IBEX_SYNC_BRANCH - sync.branch
        IBEX_SYNC_REMOTE - sync.remote
        IBEX_MAX_PUSH_ATTEMPTS - sync.max_push_attempts
        IBEX_NETWORK_TIMEOUT - sync.network_timeout_seconds
        IBEX_STRICT_MERGE - merge.strict
        IBEX_EXTERNAL_ENABLED - external.enabled
    """
    result = {k: (v.copy() if isinstance(v, dict) else v) for k, v in config_dict.items()}

    if branch := os.environ.get("IBEX_SYNC_BRANCH"):
        _set(result, "sync", "branch", branch)
    if remote := os.environ.get("IBEX_SYNC_REMOTE"):
        _set(result, "sync", "remote", remote)

    if attempts := os.environ.get("IBEX_MAX_PUSH_ATTEMPTS"):
        try:
            value = int(attempts)
        except ValueError:
            logger.warning("Invalid IBEX_MAX_PUSH_ATTEMPTS value '%s', ignoring", attempts)
        else:
            if value < 1:
                logger.warning("IBEX_MAX_PUSH_ATTEMPTS must be >= 1, got %d, ignoring", value)
            else:
                _set(result, "sync", "max_push_attempts", value)

    if timeout := os.environ.get("IBEX_NETWORK_TIMEOUT"):
        try:
            _set(result, "sync", "network_timeout_seconds", float(timeout))
        except ValueError:
            logger.warning("Invalid IBEX_NETWORK_TIMEOUT value '%s', ignoring", timeout)

    if (strict := os.environ.get("IBEX_STRICT_MERGE")) is not None:
        _set(result, "merge", "strict", strict.lower() in _TRUE_STRINGS)
    if (enabled := os.environ.get("IBEX_EXTERNAL_ENABLED")) is not None:
        _set(result, "external", "enabled", enabled.lower() in _TRUE_STRINGS)

    return result


def get_default_config() -> dict[str, Any]:
    return IbexConfig().model_dump()


def load_config(project_dir: Path | None = None, use_cache: bool = True) -> IbexConfig:
    """
    Load configuration with multi-layer merging.

    Args:
        project_dir: Project root (defaults to cwd)
        use_cache: Return the cached config from a previous load

    Raises:
        ValidationError: If the merged config fails validation
    """
    global _config_cache

    if use_cache and _config_cache is not None:
        return _config_cache

    merged = get_default_config()
    if user_config := load_json_file(get_user_config_path()):
        merged = deep_merge(merged, user_config)
    if project_config := load_json_file(get_project_config_path(project_dir)):
        merged = deep_merge(merged, project_config)
    merged = apply_env_overrides(merged)

    config = IbexConfig.model_validate(merged)
    _config_cache = config
    return config


def clear_cache() -> None:
    """Clear the configuration cache (for tests and config changes)."""
    global _config_cache
    _config_cache = None
