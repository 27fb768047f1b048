"""Load the worktree profile table from YAML, or fall back to the built-in one."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import ValidationError

from .detector import find_toplevel
from .errors import ConfigError
from .profiles import ProfileTable

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "WTDEV_CONFIG"
CONFIG_FILENAME = "worktrees.yaml"

# Default team allocation. lean-ai-coach-cto shares develop's
# resources, so it is an alias rather than a second profile.
BUILTIN_TABLE: Dict[str, Any] = {
    "default": "lean-ai-coach",
    "fallback": "default",
    "profiles": [
        {
            "identifier": "lean-ai-coach",
            "display_name": "develop",
            "aliases": ["lean-ai-coach-cto"],
            "frontend_port": 3000,
            "backend_port": 3001,
            "database_port": 5432,
            "studio_port": 5555,
            "container_name": "wasp-dev-db-develop",
        },
        {
            "identifier": "lean-ai-coach-Dev1",
            "display_name": "Dev1",
            "frontend_port": 3100,
            "backend_port": 3101,
            "database_port": 5433,
            "studio_port": 5556,
            "container_name": "wasp-dev-db-dev1",
        },
        {
            "identifier": "lean-ai-coach-Dev2",
            "display_name": "Dev2",
            "frontend_port": 3200,
            "backend_port": 3201,
            "database_port": 5434,
            "studio_port": 5557,
            "container_name": "wasp-dev-db-dev2",
        },
        {
            "identifier": "lean-ai-coach-Dev3",
            "display_name": "Dev3",
            "frontend_port": 3300,
            "backend_port": 3301,
            "database_port": 5435,
            "studio_port": 5558,
            "container_name": "wasp-dev-db-dev3",
        },
        {
            "identifier": "lean-ai-coach-tl",
            "display_name": "TechLead",
            "frontend_port": 3400,
            "backend_port": 3401,
            "database_port": 5436,
            "studio_port": 5559,
            "container_name": "wasp-dev-db-tl",
        },
        {
            "identifier": "lean-ai-coach-AnGr1",
            "display_name": "AnGr1",
            "frontend_port": 3500,
            "backend_port": 3501,
            "database_port": 5437,
            "studio_port": 5560,
            "container_name": "wasp-dev-db-angr1",
        },
    ],
}


def builtin_table() -> ProfileTable:
    return ProfileTable.model_validate(BUILTIN_TABLE)


def parse_table(data: Any, source: Optional[str] = None) -> ProfileTable:
    """Validate already-parsed config data into a ``ProfileTable``."""
    where = source or "<config>"
    if not isinstance(data, dict):
        raise ConfigError(f"{where}: expected a mapping at the top level")

    data = dict(data)
    data["source"] = source
    try:
        return ProfileTable.model_validate(data)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'table'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(f"{where}: invalid worktree config: {details}") from e


def load_table_file(path: Union[str, Path]) -> ProfileTable:
    path = Path(path)
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"{path}: invalid YAML: {e}") from e

    logger.debug("Loaded worktree config from %s", path)
    return parse_table(data, str(path))


def find_config_file(cwd: Optional[Union[str, Path]] = None) -> Optional[Path]:
    """Locate the config file: $WTDEV_CONFIG, then <worktree top level>/worktrees.yaml."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)

    toplevel = find_toplevel(cwd)
    if toplevel is not None:
        candidate = toplevel / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def load_table(
    path: Optional[Union[str, Path]] = None,
    cwd: Optional[Union[str, Path]] = None,
) -> ProfileTable:
    """Load the profile table from ``path`` or the discovered config file.

    Without any config file the built-in table is returned.
    """
    if path is None:
        path = find_config_file(cwd)
    if path is None:
        logger.debug("No %s found, using built-in profiles", CONFIG_FILENAME)
        return builtin_table()
    return load_table_file(path)
