"""toolwire configuration system.

Loads and validates configuration from ~/.toolwire/config.json, then applies
environment overrides. Uses Pydantic for schema validation with sensible
defaults.

Environment overrides:
    TOOLWIRE_HOST             listening interface
    TOOLWIRE_PORT             listening port (0 binds an ephemeral port)
    TOOLWIRE_HANDLER_TIMEOUT  per-handler timeout in seconds
    LOG_LEVEL                 debug | info | warning | error
    DEBUG=true                shorthand for LOG_LEVEL=debug

Usage:
    from toolwire.config import get_config

    config = get_config()
    print(config.server.port)
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from toolwire.errors import ConfigurationError, ErrorCode

logger = logging.getLogger(__name__)

CONFIG_PATH = Path.home() / ".toolwire" / "config.json"

CONFIG_VERSION = 1

DEFAULT_PORT = 13378
DEFAULT_MAX_MESSAGE_SIZE = 1024 * 1024  # 1MB


class ServerConfig(BaseModel):
    """Socket server settings.

    Attributes:
        host: Interface to bind.
        port: TCP port to listen on; 0 lets the OS pick one.
        max_message_size: Largest accepted frame in bytes (None = unlimited).
        handler_timeout: Seconds a handler may run before it fails (None = no limit).
        shutdown_grace: Seconds in-flight requests get to flush on shutdown.
        send_greeting: Push a connection.accepted notification on connect.
        monitor_interval: Seconds between active-connection log lines (0 disables).
    """

    host: str = "127.0.0.1"
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    max_message_size: int | None = Field(default=DEFAULT_MAX_MESSAGE_SIZE, ge=1)
    handler_timeout: float | None = Field(default=None, gt=0)
    shutdown_grace: float = Field(default=5.0, ge=0)
    send_greeting: bool = True
    monitor_interval: float = Field(default=60.0, ge=0)


class LoggingConfig(BaseModel):
    """Logging settings.

    Attributes:
        level: Root log level.
        structured: Emit JSON lines instead of plain text.
    """

    level: Literal["debug", "info", "warning", "error"] = "info"
    structured: bool = False


class ToolwireConfig(BaseModel):
    """Root configuration model."""

    config_version: int = CONFIG_VERSION
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# Module-level cache for the CLI entry point
_config: ToolwireConfig | None = None
_config_lock = threading.Lock()


def _env_number(env: Mapping[str, str], name: str, kind: type) -> Any:
    raw = env[name]
    try:
        return kind(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid value for {name}: {raw!r}",
            config_key=name,
            code=ErrorCode.CFG_ENV_INVALID,
            cause=e,
        ) from e


def apply_env_overrides(
    config: ToolwireConfig, env: Mapping[str, str] | None = None
) -> ToolwireConfig:
    """Return a copy of ``config`` with environment overrides applied.

    Raises:
        ConfigurationError: If an override cannot be parsed or fails validation.
    """
    env = os.environ if env is None else env
    data = config.model_dump()

    if env.get("TOOLWIRE_HOST"):
        data["server"]["host"] = env["TOOLWIRE_HOST"]
    if env.get("TOOLWIRE_PORT"):
        data["server"]["port"] = _env_number(env, "TOOLWIRE_PORT", int)
    if env.get("TOOLWIRE_HANDLER_TIMEOUT"):
        data["server"]["handler_timeout"] = _env_number(env, "TOOLWIRE_HANDLER_TIMEOUT", float)

    if env.get("LOG_LEVEL"):
        data["logging"]["level"] = env["LOG_LEVEL"].lower()
    elif env.get("DEBUG", "").lower() == "true":
        data["logging"]["level"] = "debug"

    try:
        return ToolwireConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid environment override: {e}",
            code=ErrorCode.CFG_ENV_INVALID,
            cause=e,
        ) from e


def load_config(
    config_path: Path | None = None, env: Mapping[str, str] | None = None
) -> ToolwireConfig:
    """Load configuration from file and environment.

    A missing or invalid file falls back to defaults with a warning;
    environment overrides are applied on top either way.

    Args:
        config_path: Optional path to config file. Defaults to ~/.toolwire/config.json.
        env: Environment mapping. Defaults to os.environ.

    Returns:
        ToolwireConfig instance.
    """
    path = config_path or CONFIG_PATH
    config = ToolwireConfig()

    if path.exists():
        try:
            with path.open() as f:
                data: dict[str, Any] = json.load(f)
            config = ToolwireConfig.model_validate(data)
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON in config file {path}: {e}, using defaults")
        except OSError as e:
            logger.warning(f"Cannot read config file {path}: {e}, using defaults")
        except ValidationError as e:
            logger.warning(f"Config validation failed: {e}, using defaults")
    else:
        logger.debug(f"Config file not found at {path}, using defaults")

    return apply_env_overrides(config, env)


def get_config() -> ToolwireConfig:
    """Get the cached configuration instance.

    Uses double-check locking for thread safety.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_config()
    return _config


def reset_config() -> None:
    """Reset cached configuration for testing."""
    global _config
    with _config_lock:
        _config = None
