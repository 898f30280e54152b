"""Sandbox guard: confine tool paths to the configured root directory."""

from __future__ import annotations

import logging
from pathlib import Path

from fileagent.gateway.errors import ConfigurationError, SandboxViolation

logger = logging.getLogger("fileagent.gateway.sandbox")


def resolve_in_root(root: str, subpath: str | None = None) -> Path:
    """Resolve *subpath* against *root* and return the absolute path.

    The joined path is canonicalized with ``Path.resolve()`` so ``..``
    segments and symlinks are collapsed before the containment check.
    Containment is component-wise: ``/srv/docs2`` is not inside
    ``/srv/docs``.

    Raises:
        ConfigurationError: *root* is empty.
        SandboxViolation: the resolved path is neither *root* nor below it.
    """
    if not root:
        raise ConfigurationError("No allowed directory configured")

    try:
        root_path = Path(root).expanduser().resolve()
        if not subpath:
            return root_path
        if "\x00" in subpath:
            raise ValueError("embedded null byte")
        candidate = (root_path / subpath).resolve()
    except (ValueError, OSError, RuntimeError) as e:
        # NUL bytes, over-long names, symlink loops
        raise SandboxViolation(f"Invalid path {subpath!r}: {e}") from e

    if candidate != root_path and not candidate.is_relative_to(root_path):
        logger.warning(
            "Path traversal blocked: %r resolves to %s (root %s)",
            subpath, candidate, root_path,
        )
        raise SandboxViolation(
            f"Path traversal detected: {subpath!r} is outside the "
            f"allowed directory"
        )
    return candidate


def relative_to_root(root: Path, path: Path) -> str:
    """Render *path* relative to *root* with forward slashes."""
    return path.relative_to(root).as_posix()
