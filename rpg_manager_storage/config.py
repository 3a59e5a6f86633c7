"""
Storage and sync settings.

Settings come from three layers, later layers winning:

1. Dataclass defaults
2. The ``storage:`` section of ``~/.rpg_manager/settings.yaml``
3. ``RPG_MANAGER_*`` environment variables

Example settings.yaml:

```yaml
storage:
  db_path: ~/.rpg_manager/rpg_cards.db
  remote_file_name: rpg_manager_db.json
  upload_progress_interval: 0.4
```
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".rpg_manager"
DEFAULT_SETTINGS_PATH = DEFAULT_HOME / "settings.yaml"
DEFAULT_REMOTE_FILE_NAME = "rpg_manager_db.json"
DEFAULT_API_BASE_URL = "https://www.googleapis.com"

_ENV_VARS = {
    "db_path": "RPG_MANAGER_DB_PATH",
    "credential_path": "RPG_MANAGER_TOKEN_PATH",
    "remote_file_name": "RPG_MANAGER_REMOTE_FILE",
    "api_base_url": "RPG_MANAGER_API_BASE_URL",
}


@dataclass
class StorageSettings:
    """Configuration for the local store and the Drive sync client."""

    db_path: str | Path = DEFAULT_HOME / "rpg_cards.db"
    credential_path: str | Path = DEFAULT_HOME / ".drive-token"
    remote_file_name: str = DEFAULT_REMOTE_FILE_NAME
    api_base_url: str = DEFAULT_API_BASE_URL
    request_timeout: float | None = None  # None keeps the transport default
    download_chunk_size: int = 64 * 1024
    upload_progress_interval: float = 0.4
    credential_margin_seconds: int = 60
    connectivity_host: str = "www.googleapis.com"

    def __post_init__(self) -> None:
        if str(self.db_path) != ":memory:":
            self.db_path = Path(self.db_path).expanduser()
        self.credential_path = Path(self.credential_path).expanduser()
        self.api_base_url = self.api_base_url.rstrip("/")

    @classmethod
    def from_env(cls, base: dict[str, Any] | None = None) -> StorageSettings:
        """Create settings from environment variables on top of ``base`` values."""
        values = dict(base or {})
        for name, env_var in _ENV_VARS.items():
            value = os.environ.get(env_var)
            if value:
                values[name] = value
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> StorageSettings:
        """Load the ``storage`` section of a YAML settings file, then apply env overrides."""
        path = path or DEFAULT_SETTINGS_PATH
        section = _load_storage_section(path)

        known = {f.name for f in fields(cls)}
        unknown = set(section) - known
        if unknown:
            logger.warning(f"Ignoring unknown storage settings in {path}: {sorted(unknown)}")

        return cls.from_env({k: v for k, v in section.items() if k in known})


def _load_storage_section(path: Path) -> dict[str, Any]:
    """Read the ``storage:`` mapping from a YAML file; missing file means defaults."""
    if not path.exists():
        return {}

    try:
        config = yaml.safe_load(path.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not read settings file {path}: {e}")
        return {}

    section = config.get("storage", {}) if isinstance(config, dict) else {}
    return section if isinstance(section, dict) else {}
