"""
Config Module - Black Box Interface

Purpose: Application configuration management
Interface: get_config(), ConfigModule.get()/set()/get_all()
Hidden: Config sources, validation logic, environment parsing

Can be replaced with different config systems (Consul, etcd, AWS Parameter Store).
"""

import os
from typing import Any, Dict, FrozenSet, Optional


# Configuration Contract: Required and Optional Keys
# This defines the black box interface - what the config module guarantees to provide

REQUIRED_CONFIG_KEYS = {
    "redis_host": "Redis server hostname",
    "redis_port": "Redis server port number",
    "redis_db": "Redis database number",
    "host": "API server bind address",
    "port": "API server port",
    "log_level": "Logging level (DEBUG, INFO, WARNING, ERROR)",
    "credential_store": "Credential store backend (redis or memory)",
    "restart_base_ms": "First reconnect delay in milliseconds",
    "restart_cap_ms": "Upper bound for a reconnect delay in milliseconds",
    "restart_max_attempts": "Consecutive reconnects allowed before a session terminates",
    "retriable_close_codes": "Close codes that trigger an automatic reconnect",
}

OPTIONAL_CONFIG_KEYS = {
    "redis_password": {
        "description": "Redis authentication password",
        "default": None,
    },
    "debug": {
        "description": "Enable debug mode",
        "default": False,
    },
    "transport_factory": {
        "description": "Import path (module:attr) of the transport factory",
        "default": None,
    },
    "print_qr_console": {
        "description": "Log new login challenges as ASCII QR codes",
        "default": False,
    },
    "restore_on_startup": {
        "description": "Reconnect sessions persisted as connected when the service starts",
        "default": True,
    },
    "event_queue_size": {
        "description": "Max undelivered events per event feed subscriber",
        "default": 100,
    },
}

DEFAULT_RETRIABLE_CLOSE_CODES = "515,428,408,503"


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_codes(value: str) -> FrozenSet[int]:
    """
    Parse a comma separated list of close codes.

    Raises:
        ValueError: If an entry is not an integer
    """
    codes = set()
    for part in value.split(","):
        part = part.strip()
        if part:
            codes.add(int(part))
    return frozenset(codes)


class ConfigModule:
    """Configuration management module."""

    def __init__(self, overrides: Optional[Dict[str, Any]] = None):
        """Initialize with environment variables, then apply explicit overrides."""
        self._config = self._load_from_env()
        if overrides:
            self._config.update(overrides)
        self._validate_required_keys()

    def _validate_required_keys(self) -> None:
        """
        Validate that all required configuration keys are present.

        Raises:
            ValueError: If required keys are missing or invalid
        """
        missing_keys = []
        for key in REQUIRED_CONFIG_KEYS:
            if key not in self._config or self._config[key] is None:
                missing_keys.append(key)

        if missing_keys:
            raise ValueError(
                f"Missing required configuration keys: {', '.join(missing_keys)}. "
                f"Check environment variables and deployment configuration."
            )

        if self._config["credential_store"] not in ("redis", "memory"):
            raise ValueError(
                f"Unsupported credential store '{self._config['credential_store']}' "
                f"(expected 'redis' or 'memory')"
            )

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment."""
        # Parse Redis port (might be in tcp://host:port format from K8s)
        redis_port_env = os.getenv("REDIS_PORT", "6379")
        if redis_port_env.startswith("tcp://"):
            redis_port = int(redis_port_env.split(":")[-1])
        else:
            redis_port = int(redis_port_env)

        return {
            # Redis settings
            "redis_host": os.getenv("REDIS_HOST", "localhost"),
            "redis_port": redis_port,
            "redis_db": int(os.getenv("REDIS_DB", "0")),
            "redis_password": os.getenv("REDIS_PASSWORD"),
            # API settings
            "host": os.getenv("API_HOST", "0.0.0.0"),
            "port": int(os.getenv("API_PORT", "8080")),
            "log_level": os.getenv("LOG_LEVEL", "INFO"),
            "debug": _parse_bool(os.getenv("DEBUG")),
            # Session lifecycle settings
            "credential_store": os.getenv("CREDENTIAL_STORE", "redis").lower(),
            "transport_factory": os.getenv("TRANSPORT_FACTORY") or None,
            "restart_base_ms": int(os.getenv("RESTART_BASE_MS", "2000")),
            "restart_cap_ms": int(os.getenv("RESTART_CAP_MS", "30000")),
            "restart_max_attempts": int(os.getenv("RESTART_MAX_ATTEMPTS", "5")),
            "retriable_close_codes": _parse_codes(
                os.getenv("RETRIABLE_CLOSE_CODES", DEFAULT_RETRIABLE_CLOSE_CODES)
            ),
            "print_qr_console": _parse_bool(os.getenv("PRINT_QR_CONSOLE")),
            "restore_on_startup": _parse_bool(os.getenv("RESTORE_ON_STARTUP"), default=True),
            "event_queue_size": int(os.getenv("EVENT_QUEUE_SIZE", "100")),
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value."""
        self._config[key] = value

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values."""
        return self._config.copy()

    def redis_url(self) -> str:
        """Redis URL without the password (passed separately to the client)."""
        return f"redis://{self.get('redis_host')}:{self.get('redis_port')}/{self.get('redis_db')}"

    @staticmethod
    def get_config_schema() -> Dict[str, Any]:
        """
        Get the configuration schema (contract) for this module.

        Returns:
            Dictionary with 'required' and 'optional' key specifications

        Example:
            >>> schema = ConfigModule.get_config_schema()
            >>> print(schema['required']['redis_host'])
            'Redis server hostname'
        """
        return {
            "required": REQUIRED_CONFIG_KEYS.copy(),
            "optional": OPTIONAL_CONFIG_KEYS.copy(),
        }


# Singleton instance
_instance = None


def get_config() -> ConfigModule:
    """Get the configuration module singleton."""
    global _instance
    if _instance is None:
        _instance = ConfigModule()
    return _instance


def reset_config() -> None:
    """Drop the singleton so the next get_config() re-reads the environment."""
    global _instance
    _instance = None


__all__ = ["get_config", "reset_config", "ConfigModule", "REQUIRED_CONFIG_KEYS", "OPTIONAL_CONFIG_KEYS"]
