"""Environment loading helpers.

``IBEX_*`` variables may come from ``.env`` files as well as the shell:

    os.environ (pre-existing) > project .env > user .env

A ``.env`` file never overrides a variable already exported in the shell.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

from dotenv import dotenv_values


def _read_env(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    return {str(k): str(v) for k, v in dotenv_values(path).items() if k is not None and v is not None}


def load_layered_env(
    *,
    project_dir: Path | None = None,
    user_env_paths: Iterable[Path] | None = None,
    project_env_paths: Iterable[Path] | None = None,
) -> set[str]:
    """Load environment variables from user and project .env files.

    Args:
        project_dir: base directory for project env paths (defaults to cwd)
        user_env_paths: explicit user env file paths
        project_env_paths: explicit project env file paths

    Returns:
        Names of the variables that were set
    """
    if project_dir is None:
        project_dir = Path.cwd()

    if user_env_paths is None:
        xdg_home = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
        user_env_paths = [xdg_home / "ibex" / ".env"]
    if project_env_paths is None:
        project_env_paths = [project_dir / ".env", project_dir / ".env.local"]

    set_keys: set[str] = set()
    for p in user_env_paths:
        for k, v in _read_env(Path(p)).items():
            if k not in os.environ:
                os.environ[k] = v
                set_keys.add(k)

    # project values override user values, never the shell
    for p in project_env_paths:
        for k, v in _read_env(Path(p)).items():
            if k not in os.environ or k in set_keys:
                os.environ[k] = v
                set_keys.add(k)
    return set_keys
