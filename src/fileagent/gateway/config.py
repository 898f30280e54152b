"""Gateway config: dataclass, YAML loader, and partial updates.

Config shape::

    gateway:
      port: 3000
      isolation: true               # bind 127.0.0.1 (false: 0.0.0.0)
      api_key: "${MCP_API_KEY}"     # empty disables auth
      allowed_path: ~/Documents/agent
      approve_requests: true
      approval_timeout: 120         # optional, seconds; default waits forever
      notifications: [host, desktop]
      approval_webhook_url: https://ntfy.example.com/fileagent
      log_capacity: 100

The running gateway never mutates a ``GatewayConfig`` in place.
:func:`apply_config_update` returns a new instance which the
``GatewayContext`` swaps in, so a request that already read
``allowed_path`` keeps the value it checked against.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

from fileagent.gateway.errors import GatewayConfigError
from fileagent.utils.safe_yaml import safe_yaml_load

logger = logging.getLogger("fileagent.gateway.config")

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

_VALID_NOTIFICATIONS = frozenset({"host", "desktop", "webhook"})

DEFAULT_PORT = 3000
DEFAULT_LOG_CAPACITY = 100


@dataclass(frozen=True)
class GatewayConfig:
    """Operator settings. Frozen: updates produce a new instance."""
    isolation: bool = True
    api_key: str = ""
    allowed_path: str = ""
    port: int = DEFAULT_PORT
    approve_requests: bool = True
    approval_timeout: float | None = None
    notifications: tuple[str, ...] = ("host",)
    approval_webhook_url: str = ""
    log_capacity: int = DEFAULT_LOG_CAPACITY

    @property
    def host(self) -> str:
        return "127.0.0.1" if self.isolation else "0.0.0.0"

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["notifications"] = list(self.notifications)
        return data


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false", "1", "0"):
        return value.lower() in ("true", "1")
    raise GatewayConfigError(f"{name}: expected a boolean, got {value!r}")


def _as_port(name: str, value: Any) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise GatewayConfigError(f"{name}: expected an integer, got {value!r}")
    if not 0 < port < 65536:
        raise GatewayConfigError(f"{name}: {port} is not a valid TCP port")
    return port


def _as_str(name: str, value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise GatewayConfigError(f"{name}: expected a string, got {value!r}")
    return value


def _as_path(name: str, value: Any) -> str:
    raw = _as_str(name, value).strip()
    if not raw:
        return ""
    return str(Path(raw).expanduser().resolve())


def _as_timeout(name: str, value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        raise GatewayConfigError(f"{name}: expected seconds, got {value!r}")
    if timeout <= 0:
        raise GatewayConfigError(f"{name}: must be positive")
    return timeout


def _as_notifications(name: str, value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise GatewayConfigError(f"{name}: expected a list, got {value!r}")
    channels = tuple(str(v) for v in value)
    for c in channels:
        if c not in _VALID_NOTIFICATIONS:
            raise GatewayConfigError(
                f"{name}: invalid channel '{c}'. "
                f"Must be one of: {', '.join(sorted(_VALID_NOTIFICATIONS))}"
            )
    return channels


def _as_webhook_url(name: str, value: Any) -> str:
    url = _as_str(name, value)
    if url:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise GatewayConfigError(
                f"{name}: must be an http(s) URL with a hostname, got {url!r}"
            )
    return url


def _as_capacity(name: str, value: Any) -> int:
    try:
        capacity = int(value)
    except (TypeError, ValueError):
        raise GatewayConfigError(f"{name}: expected an integer, got {value!r}")
    if capacity < 1:
        raise GatewayConfigError(f"{name}: must be at least 1")
    return capacity


# Fields the host UI may change at runtime, with their coercers.
_COERCERS = {
    "isolation": _as_bool,
    "api_key": _as_str,
    "allowed_path": _as_path,
    "port": _as_port,
    "approve_requests": _as_bool,
    "approval_timeout": _as_timeout,
    "notifications": _as_notifications,
    "approval_webhook_url": _as_webhook_url,
    "log_capacity": _as_capacity,
}

# Accept the host UI's camelCase field names as well.
_ALIASES = {
    "apiKey": "api_key",
    "allowedPath": "allowed_path",
    "approveRequests": "approve_requests",
    "approvalTimeout": "approval_timeout",
    "approvalWebhookUrl": "approval_webhook_url",
    "logCapacity": "log_capacity",
}


def apply_config_update(
    config: GatewayConfig, changes: dict[str, Any],
) -> GatewayConfig:
    """Return a copy of *config* with *changes* validated and applied.

    Raises:
        GatewayConfigError: unknown field or invalid value. Nothing is
            applied when any field fails.
    """
    normalized: dict[str, Any] = {}
    for key, value in changes.items():
        name = _ALIASES.get(key, key)
        coercer = _COERCERS.get(name)
        if coercer is None:
            raise GatewayConfigError(f"Unknown config field: '{key}'")
        normalized[name] = coercer(name, value)

    updated = dataclasses.replace(config, **normalized)
    _check_consistency(updated)
    return updated


def _check_consistency(config: GatewayConfig) -> None:
    if "webhook" in config.notifications and not config.approval_webhook_url:
        raise GatewayConfigError(
            "approval_webhook_url is required when notifications "
            "includes 'webhook'"
        )


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------

def load_gateway_config(config_path: str) -> GatewayConfig:
    """Load and validate a gateway YAML config file.

    Relative ``allowed_path`` values resolve against the config file's
    directory. ``${VAR}`` in ``api_key`` is read from the environment.

    Raises:
        GatewayConfigError: file missing, invalid YAML, or invalid values.
    """
    config_file = Path(config_path).expanduser().resolve()
    if not config_file.is_file():
        raise GatewayConfigError(f"Config file not found: {config_path}")

    try:
        raw = safe_yaml_load(config_file.read_text())
    except (yaml.YAMLError, ValueError) as e:
        raise GatewayConfigError(f"Invalid YAML in config file: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise GatewayConfigError(
            "Config file must contain a YAML mapping (got "
            f"{type(raw).__name__})"
        )

    gw_raw = raw.get("gateway", {})
    if not isinstance(gw_raw, dict):
        raise GatewayConfigError("'gateway' section must be a mapping")

    changes = dict(gw_raw)
    if "api_key" in changes and changes["api_key"] is not None:
        changes["api_key"] = _interpolate_env(str(changes["api_key"]))
    allowed = changes.get("allowed_path")
    if allowed:
        expanded = Path(str(allowed)).expanduser()
        if not expanded.is_absolute():
            expanded = config_file.parent / expanded
        changes["allowed_path"] = str(expanded)

    config = apply_config_update(GatewayConfig(), changes)

    if config.allowed_path and not Path(config.allowed_path).is_dir():
        raise GatewayConfigError(
            f"allowed_path is not a directory: {config.allowed_path}"
        )
    if not config.allowed_path:
        logger.warning(
            "No allowed_path configured; every tool call will be rejected "
            "until one is set",
        )
    return config


def _interpolate_env(value: str) -> str:
    """Resolve ``${VAR_NAME}`` patterns from ``os.environ``.

    Raises:
        GatewayConfigError: a referenced variable is not set.
    """
    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            raise GatewayConfigError(
                f"api_key references ${{{var_name}}} but it is not set"
            )
        return env_value

    return _ENV_VAR_PATTERN.sub(_replace, value)
