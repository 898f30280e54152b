"""Strict JSON parsing for payloads relayed between agents and the gateway.

Python's ``json.loads()`` silently keeps the last of two duplicate keys
and accepts ``NaN`` / ``Infinity``.  Other JSON-RPC peers (the Node and
Go MCP SDKs) would reject or interpret such documents differently, so
the bridge refuses to relay them.
"""

from __future__ import annotations

import json
from typing import Any


def _reject_duplicate_keys(pairs: list[tuple[str, object]]) -> dict:
    """Object pairs hook that raises on duplicate keys."""
    seen: dict = {}
    for key, value in pairs:
        if key in seen:
            raise ValueError(f"Duplicate JSON key: {key!r}")
        seen[key] = value
    return seen


def _reject_non_standard_constant(constant: str) -> object:
    raise ValueError(
        f"Non-standard JSON constant not allowed: {constant!r}"
    )


def safe_json_loads(s: str) -> Any:
    """Parse JSON, rejecting duplicate keys and non-standard constants."""
    return json.loads(
        s,
        object_pairs_hook=_reject_duplicate_keys,
        parse_constant=_reject_non_standard_constant,
    )


def is_json_document(s: str) -> bool:
    """Whether *s* parses as a single well-formed JSON document."""
    try:
        safe_json_loads(s)
    except ValueError:
        return False
    return True
