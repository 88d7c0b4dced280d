"""
Configuration: loads settings from .abacus.yaml, environment variables,
and built-in defaults (in that priority order: CLI args > env > YAML > defaults).
"""

import os

import yaml


_DEFAULTS = {
    "state_dir": ".abacus",
    "db_filename": "memory.db",
    "default_pattern": "**/*.{ts,js,tsx,jsx}",
    "max_workers": 8,
    "log_level": "WARNING",
    "ignore_dirs": [],
    "progress": True,
}

# Config file search locations
_CONFIG_FILENAMES = [".abacus.yaml", ".abacus.yml"]


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    # Search CWD first, then home directory
    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


class Config:
    """Application configuration.

    Settings are resolved in priority order:
    1. CLI arguments (handled by caller)
    2. Environment variables
    3. .abacus.yaml config file
    4. Built-in defaults
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = yaml_data or {}

        # Helper: env var > yaml > default; a value that fails *cast* is skipped
        def _get(env_key: str, yaml_key: str, default, cast=str):
            for val in (os.getenv(env_key), yd.get(yaml_key)):
                if val is None:
                    continue
                try:
                    return cast(val)
                except (TypeError, ValueError):
                    continue
            return default

        def _get_bool(env_key: str, yaml_key: str, default: bool) -> bool:
            env_val = os.getenv(env_key)
            if env_val is not None:
                return env_val.lower() == "true"
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return bool(yaml_val)
            return default

        self.STATE_DIR = _get("ABACUS_STATE_DIR", "state_dir",
                              _DEFAULTS["state_dir"])
        self.DB_FILENAME = _get("ABACUS_DB_FILENAME", "db_filename",
                                _DEFAULTS["db_filename"])
        self.DEFAULT_PATTERN = _get("ABACUS_DEFAULT_PATTERN", "default_pattern",
                                    _DEFAULTS["default_pattern"])
        self.MAX_WORKERS = _get("ABACUS_MAX_WORKERS", "max_workers",
                                _DEFAULTS["max_workers"], cast=int)
        self.LOG_LEVEL = _get("ABACUS_LOG_LEVEL", "log_level",
                              _DEFAULTS["log_level"]).upper()
        self.PROGRESS = _get_bool("ABACUS_PROGRESS", "progress",
                                  _DEFAULTS["progress"])

        # Extra directories to skip, on top of the built-in control dirs
        self.IGNORE_DIRS: list[str] = yd.get("ignore_dirs", _DEFAULTS["ignore_dirs"])
        if not isinstance(self.IGNORE_DIRS, list):
            self.IGNORE_DIRS = []
        self.IGNORE_DIRS = [str(d) for d in self.IGNORE_DIRS]

    def db_path(self, project_root: str | None = None) -> str:
        """Return the path of the memory database under *project_root*."""
        base = project_root or os.getcwd()
        return os.path.join(base, self.STATE_DIR, self.DB_FILENAME)

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)
