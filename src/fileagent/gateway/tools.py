"""Tool catalog: static tool definitions, argument validation, handlers.

Handlers are plain synchronous functions.  They receive the target path
already resolved by the sandbox guard, never a raw client string, and
are run in a worker thread by the dispatcher.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import jsonschema

from fileagent.gateway.errors import ValidationError
from fileagent.gateway.sandbox import relative_to_root
from fileagent.utils.safe_io import atomic_write_text_sync

logger = logging.getLogger("fileagent.gateway.tools")

MAX_SEARCH_RESULTS = 1000

# handler(root, target, arguments) -> text
ToolHandler = Callable[[Path, Path, dict[str, Any]], str]


@dataclass(frozen=True)
class ToolDefinition:
    """One callable capability exposed over MCP.

    ``path_argument`` names the argument holding the client-supplied path
    that must pass the sandbox guard before the handler runs.
    """
    name: str
    description: str
    input_schema: dict[str, Any]
    path_argument: str
    handler: ToolHandler = field(compare=False, repr=False)
    read_only: bool = True


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

def _entry_type(entry: os.DirEntry) -> str:
    if entry.is_dir():
        return "directory"
    if entry.is_file():
        return "file"
    return "other"


def _list_directory(root: Path, target: Path, arguments: dict[str, Any]) -> str:
    with os.scandir(target) as it:
        entries = [
            {"name": entry.name, "type": _entry_type(entry)}
            for entry in it
        ]
    entries.sort(key=lambda e: e["name"])
    return json.dumps(entries, indent=2)


def _read_file(root: Path, target: Path, arguments: dict[str, Any]) -> str:
    return target.read_text(encoding="utf-8")


def _write_file(root: Path, target: Path, arguments: dict[str, Any]) -> str:
    # Parents of a sandboxed target are themselves inside the root
    target.parent.mkdir(parents=True, exist_ok=True)
    atomic_write_text_sync(target, arguments["content"])
    return f"File written successfully: {relative_to_root(root, target)}"


def _search_files(root: Path, target: Path, arguments: dict[str, Any]) -> str:
    if not target.is_dir():
        raise NotADirectoryError(f"Not a directory: {arguments['directory']}")

    needle = arguments["pattern"].lower()
    matches: list[str] = []
    for dirpath, dirnames, filenames in os.walk(target):
        dirnames.sort()
        for name in sorted(filenames):
            if needle in name.lower():
                matches.append(
                    relative_to_root(root, Path(dirpath) / name),
                )
                if len(matches) >= MAX_SEARCH_RESULTS:
                    logger.info(
                        "search_files truncated at %d results",
                        MAX_SEARCH_RESULTS,
                    )
                    return json.dumps(matches, indent=2)
    return json.dumps(matches, indent=2)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

_CATALOG: tuple[ToolDefinition, ...] = (
    ToolDefinition(
        name="list_directory",
        description=(
            "List files and folders on the user's local computer within "
            "the allowed directory. Use this to see what files are "
            "available."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "subpath": {
                    "type": "string",
                    "description": (
                        "Directory relative to the allowed directory. "
                        "Omit to list the allowed directory itself."
                    ),
                },
            },
        },
        path_argument="subpath",
        handler=_list_directory,
    ),
    ToolDefinition(
        name="read_file",
        description=(
            "Read the contents of a file from the user's local computer."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "subpath": {
                    "type": "string",
                    "description": "File path relative to the allowed directory.",
                },
            },
            "required": ["subpath"],
        },
        path_argument="subpath",
        handler=_read_file,
    ),
    ToolDefinition(
        name="write_file",
        description=(
            "Write text to a file within the allowed directory, creating "
            "it (and missing parent folders) or replacing its contents."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "subpath": {
                    "type": "string",
                    "description": "File path relative to the allowed directory.",
                },
                "content": {
                    "type": "string",
                    "description": "Full text content to write.",
                },
            },
            "required": ["subpath", "content"],
        },
        path_argument="subpath",
        handler=_write_file,
        read_only=False,
    ),
    ToolDefinition(
        name="search_files",
        description=(
            "Recursively search for files whose name contains a pattern "
            "(case-insensitive) below a directory inside the allowed "
            "directory."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "directory": {
                    "type": "string",
                    "description": (
                        "Directory to search, relative to the allowed "
                        "directory. Use an empty string for the root."
                    ),
                },
                "pattern": {
                    "type": "string",
                    "description": "Case-insensitive substring to match file names against.",
                },
            },
            "required": ["directory", "pattern"],
        },
        path_argument="directory",
        handler=_search_files,
    ),
)

_BY_NAME: dict[str, ToolDefinition] = {t.name: t for t in _CATALOG}


def list_tools() -> list[ToolDefinition]:
    """Return the fixed tool catalog."""
    return list(_CATALOG)


def get_tool(name: str) -> ToolDefinition | None:
    return _BY_NAME.get(name)


def validate_arguments(
    definition: ToolDefinition, arguments: dict[str, Any],
) -> None:
    """Validate *arguments* against the tool's JSON schema.

    Raises:
        ValidationError: with the first schema violation found.
    """
    try:
        jsonschema.validate(instance=arguments, schema=definition.input_schema)
    except jsonschema.ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path) or "arguments"
        raise ValidationError(
            f"Invalid arguments for {definition.name} ({location}): "
            f"{e.message}"
        ) from e
