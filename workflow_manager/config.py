"""Runtime settings read from the environment."""

import os

DEFAULT_DATABASE_PATH = "./data/workflow.db"


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def database_path() -> str:
    """Path of the SQLite database file."""
    return os.getenv("DATABASE_PATH", DEFAULT_DATABASE_PATH)


def log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


def enforce_version_locks() -> bool:
    """Whether a held version lock blocks graph edits on that definition."""
    return _env_flag("ENFORCE_VERSION_LOCKS", True)


def registry_retention_days() -> int:
    """Default age cutoff for cleaning up terminal registry entries."""
    return int(os.getenv("REGISTRY_RETENTION_DAYS", "30"))
