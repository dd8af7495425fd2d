# ============================================================================
# RELAY Chat - Configuration Management
# ============================================================================
# Defaults with type casting, overridable per key through RELAY_<KEY>
# environment variables or in-process via set_config().
# ============================================================================

import os
from typing import Any, Dict

ENV_PREFIX = "RELAY_"

# key -> (default, value_type, category)
DEFAULT_CONFIG = {
    # Storage
    "db_path": ("relay.db", "string", "storage"),
    "storage_backend": ("sqlite", "string", "storage"),
    "max_history": (1000, "int", "storage"),

    # Maintenance
    "message_max_age_hours": (24, "int", "cleanup"),
    "cleanup_enabled": (True, "bool", "cleanup"),
    "cleanup_interval_minutes": (60, "int", "cleanup"),

    # Server
    "host": ("0.0.0.0", "string", "server"),
    "port": (8000, "int", "server"),
    "cors_origins": ("*", "string", "server"),
    "log_level": ("INFO", "string", "server"),
}


class ChatConfig:
    """
    Process-wide configuration.

    Lookup order: in-process override, environment variable, default.
    Values are cast with the type declared in DEFAULT_CONFIG.
    """

    _cache: Dict[str, Any] = {}
    _cache_loaded: bool = False
    _overrides: Dict[str, Any] = {}

    @classmethod
    def _load_cache(cls):
        if cls._cache_loaded:
            return

        for key, (default, vtype, category) in DEFAULT_CONFIG.items():
            raw = os.environ.get(ENV_PREFIX + key.upper())
            cls._cache[key] = default if raw is None else cls._cast_value(raw, vtype, default)

        cls._cache_loaded = True

    @classmethod
    def _cast_value(cls, value: str, value_type: str, default: Any = None) -> Any:
        """Cast string value to the declared type, falling back to the default."""
        if value is None:
            return default
        if value_type == "bool":
            return value.strip().lower() in ("true", "1", "yes", "on")
        if value_type == "int":
            try:
                return int(value)
            except ValueError:
                return default
        return value

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        if key in cls._overrides:
            return cls._overrides[key]
        cls._load_cache()
        return cls._cache.get(key, default)

    @classmethod
    def set(cls, key: str, value: Any):
        cls._overrides[key] = value

    @classmethod
    def reset(cls):
        """Drop overrides and re-read the environment on next access."""
        cls._cache = {}
        cls._cache_loaded = False
        cls._overrides = {}


# Convenience functions
def get_config(key: str, default: Any = None) -> Any:
    """Get a configuration value."""
    return ChatConfig.get(key, default)


def set_config(key: str, value: Any):
    """Override a configuration value for this process."""
    ChatConfig.set(key, value)


def reset_config():
    ChatConfig.reset()
