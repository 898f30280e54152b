"""Atomic file writes for tool output that lands inside the sandbox root.

``write_file`` must never leave a half-written file behind when the
process is interrupted, and must never follow a symlink planted at the
target path after the sandbox check resolved it.  Writes therefore go
to a randomly named sibling temp file which is then renamed over the
target.
"""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path
from typing import Union


class SymlinkTargetError(OSError):
    """Raised when the write target is a symlink."""


def atomic_write_sync(
    target_path: Union[str, Path],
    data: Union[bytes, str],
    mode: int = 0o644,
) -> None:
    """Write *data* to *target_path* atomically.

    1. Rejects symlink targets.
    2. Writes to a ``tempfile.mkstemp`` file in the same directory.
    3. ``os.fsync`` before ``os.replace`` so the data is durable.
    4. Removes the temp file on any failure.

    Args:
        target_path: Destination path (created or overwritten).
        data: ``str`` is encoded to UTF-8, ``bytes`` written verbatim.
        mode: POSIX permission bits for the final file.
    """
    target = Path(target_path)

    if target.is_symlink():
        raise SymlinkTargetError(
            f"Refusing to write through symlink: {target}"
        )

    raw = data.encode("utf-8") if isinstance(data, str) else data

    fd: int | None = None
    tmp_path: str | None = None
    try:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(target.parent),
            prefix=f".{target.name}.",
            suffix=".tmp",
        )
        total = 0
        while total < len(raw):
            written = os.write(fd, raw[total:])
            if written == 0:
                raise OSError("os.write returned 0 bytes")
            total += written
        os.fsync(fd)
        os.close(fd)
        fd = None

        if sys.platform != "win32":
            os.chmod(tmp_path, mode)

        os.replace(tmp_path, str(target))
        tmp_path = None
    finally:
        if fd is not None:
            os.close(fd)
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass


def atomic_write_text_sync(
    target_path: Union[str, Path],
    text: str,
    mode: int = 0o644,
    encoding: str = "utf-8",
) -> None:
    """Encode *text* and write it with :func:`atomic_write_sync`."""
    atomic_write_sync(target_path, text.encode(encoding), mode)
