"""
Configuration models and loading.

Layers: defaults < user < project < env vars.
"""

from .env import load_layered_env
from .loader import (
    clear_cache,
    deep_merge,
    get_project_config_path,
    get_user_config_path,
    get_xdg_config_home,
    load_config,
)
from .models import DocsConfig, ExternalConfig, IbexConfig, MergeConfig, SyncConfig

__all__ = [
    # Models
    "DocsConfig",
    "ExternalConfig",
    "IbexConfig",
    "MergeConfig",
    "SyncConfig",
    # Loader functions
    "clear_cache",
    "deep_merge",
    "get_project_config_path",
    "get_user_config_path",
    "get_xdg_config_home",
    "load_config",
    "load_layered_env",
]
