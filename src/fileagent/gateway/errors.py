"""Gateway error taxonomy.

Tool-level errors are raised where they occur (guard, catalog,
coordinator) and converted into ``isError`` tool results in one place,
``FileAgentGateway.call_tool``.  Transport-level errors
(``AuthorizationError``, ``SessionNotFound``) short-circuit with an HTTP
status before a request reaches the dispatcher.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for all gateway errors.

    ``code`` is the stable machine-readable identifier placed in the
    ``error`` field of structured failure responses.
    """

    code = "GATEWAY_ERROR"

    def to_payload(self) -> dict[str, str]:
        return {"error": self.code, "detail": str(self)}


class ConfigurationError(GatewayError):
    """No usable sandbox root (or another required setting) is configured."""

    code = "CONFIGURATION_ERROR"


class GatewayConfigError(ConfigurationError):
    """A config file or config update is invalid."""


class AuthorizationError(GatewayError):
    """Missing or wrong API key."""

    code = "UNAUTHORIZED"


class ValidationError(GatewayError):
    """Tool arguments do not satisfy the tool's input schema."""

    code = "VALIDATION_ERROR"


class SandboxViolation(GatewayError):
    """A requested path resolves outside the sandbox root."""

    code = "SANDBOX_VIOLATION"


class UserDenied(GatewayError):
    """The operator denied the call, or a channel denied it implicitly."""

    code = "USER_DENIED"


class UnknownTool(GatewayError):
    code = "UNKNOWN_TOOL"


class ToolIOError(GatewayError):
    """The underlying filesystem operation failed."""

    code = "IO_ERROR"


class SessionNotFound(GatewayError):
    """A message was addressed to a session id that is not registered."""

    code = "SESSION_NOT_FOUND"
