"""Shared fixtures for the FileAgent test suite."""

from pathlib import Path

import pytest

from fileagent.gateway.config import GatewayConfig
from fileagent.gateway.context import GatewayContext


@pytest.fixture()
def sandbox_root(tmp_path) -> Path:
    """A sandbox folder with a small, known tree.

    Layout::

        root/
          notes.txt          "hello"
          docs/
            Report.md        "# report"
            archive/
              old_report.txt "old"
    """
    root = tmp_path / "root"
    (root / "docs" / "archive").mkdir(parents=True)
    (root / "notes.txt").write_text("hello", encoding="utf-8")
    (root / "docs" / "Report.md").write_text("# report", encoding="utf-8")
    (root / "docs" / "archive" / "old_report.txt").write_text(
        "old", encoding="utf-8",
    )
    return root


@pytest.fixture()
def make_context(sandbox_root):
    """Factory for an isolated GatewayContext over ``sandbox_root``."""
    def _make(**overrides) -> GatewayContext:
        fields = {
            "allowed_path": str(sandbox_root),
            "approve_requests": False,
            "notifications": (),
        }
        fields.update(overrides)
        return GatewayContext(config=GatewayConfig(**fields))
    return _make
