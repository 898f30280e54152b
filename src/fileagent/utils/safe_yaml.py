"""YAML loading with duplicate key detection.

PyYAML's ``safe_load()`` keeps the last value for a repeated mapping
key.  A gateway config with two ``allowed_path:`` entries would silently
sandbox a different directory than the one a reader sees first, so
duplicates are rejected at every mapping level.
"""

from __future__ import annotations

from typing import IO, Union

import yaml


class _DuplicateKeyCheckLoader(yaml.SafeLoader):
    """SafeLoader subclass that rejects duplicate mapping keys."""


def _construct_mapping_no_duplicates(loader, node):
    loader.flatten_mapping(node)
    pairs = loader.construct_pairs(node)
    seen: set = set()
    for key, _value in pairs:
        if key in seen:
            raise ValueError(
                f"Duplicate YAML key: {key!r} "
                f"(line {node.start_mark.line + 1})"
            )
        seen.add(key)
    return dict(pairs)


_DuplicateKeyCheckLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping_no_duplicates,
)


def safe_yaml_load(stream: Union[str, IO[str]]) -> object:
    """Drop-in replacement for ``yaml.safe_load()`` rejecting duplicate keys."""
    return yaml.load(stream, Loader=_DuplicateKeyCheckLoader)
