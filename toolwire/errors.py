"""Unified exception hierarchy for toolwire.

All toolwire-specific exceptions inherit from ToolwireError, so the CLI and
the server can handle them uniformly. Errors that travel over the wire use
``toolwire.socket_server.protocol.JsonRpcError`` instead.

Exception Hierarchy:
    ToolwireError (base)
    ├── ConfigurationError - Configuration and settings issues
    ├── ServerError - Socket server lifecycle failures
    │   └── ServerStartupError - Listening socket could not be bound
    └── RegistrationError - Invalid or duplicate handler registration

Usage:
    from toolwire.errors import ServerStartupError

    try:
        await server.start()
    except ServerStartupError as e:
        logger.error("Cannot start: %s (port %s)", e.message, e.port)
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable codes for toolwire errors."""

    # Configuration errors (CFG_*)
    CFG_INVALID = "CFG_INVALID"
    CFG_ENV_INVALID = "CFG_ENV_INVALID"

    # Server errors (SRV_*)
    SRV_BIND_FAILED = "SRV_BIND_FAILED"
    SRV_NOT_RUNNING = "SRV_NOT_RUNNING"

    # Handler registration errors (REG_*)
    REG_DUPLICATE = "REG_DUPLICATE"
    REG_INVALID = "REG_INVALID"

    # Generic errors
    UNKNOWN = "UNKNOWN"


class ToolwireError(Exception):
    """Base exception for all toolwire errors.

    Attributes:
        message: Human-readable error message.
        code: Machine-readable error code from ErrorCode enum.
        details: Optional additional context about the error.
        cause: Optional original exception that caused this error.
    """

    default_message: str = "An error occurred"
    default_code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str | None = None,
        *,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details or {}
        self.cause = cause

        super().__init__(self.message)

        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        parts = [f"{self.__class__.__name__}({self.message!r}"]
        if self.code != self.default_code:
            parts.append(f", code={self.code.value!r}")
        if self.details:
            parts.append(f", details={self.details!r}")
        if self.cause:
            parts.append(f", cause={self.cause!r}")
        parts.append(")")
        return "".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a dictionary for CLI and log output."""
        result: dict[str, Any] = {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "detail": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# Configuration Errors


class ConfigurationError(ToolwireError):
    """Raised for configuration and settings issues.

    Examples:
        - Invalid configuration values
        - Unparseable environment overrides
    """

    default_message = "Configuration error"
    default_code = ErrorCode.CFG_INVALID

    def __init__(
        self,
        message: str | None = None,
        *,
        config_key: str | None = None,
        config_path: str | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if config_key:
            details["config_key"] = config_key
        if config_path:
            details["config_path"] = config_path
        super().__init__(message, code=code, details=details, cause=cause)


# Server Errors


class ServerError(ToolwireError):
    """Raised for socket server lifecycle failures."""

    default_message = "Socket server error"
    default_code = ErrorCode.SRV_NOT_RUNNING


class ServerStartupError(ServerError):
    """Raised when the listening socket cannot be bound.

    This is the only fatal server error: it is surfaced to the caller of
    ``ToolSocketServer.start()`` and the server never enters the running
    state.
    """

    default_message = "Failed to start socket server"
    default_code = ErrorCode.SRV_BIND_FAILED

    def __init__(
        self,
        message: str | None = None,
        *,
        host: str | None = None,
        port: int | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if host is not None:
            details["host"] = host
        if port is not None:
            details["port"] = port
        self.host = host
        self.port = port
        super().__init__(message, code=code, details=details, cause=cause)


# Registration Errors


class RegistrationError(ToolwireError):
    """Raised when a handler cannot be registered."""

    default_message = "Invalid handler registration"
    default_code = ErrorCode.REG_INVALID

    def __init__(
        self,
        message: str | None = None,
        *,
        method: str | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if method:
            details["method"] = method
        super().__init__(message, code=code, details=details, cause=cause)


__all__ = [
    "ErrorCode",
    "ToolwireError",
    "ConfigurationError",
    "ServerError",
    "ServerStartupError",
    "RegistrationError",
]
