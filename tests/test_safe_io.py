"""Tests for fileagent.utils.safe_io: atomic writes."""

import os
import stat
import sys

import pytest

from fileagent.utils.safe_io import (
    SymlinkTargetError,
    atomic_write_sync,
    atomic_write_text_sync,
)


# ---------------------------------------------------------------------------
# atomic_write_sync
# ---------------------------------------------------------------------------


class TestAtomicWriteSync:

    def test_creates_file(self, tmp_path):
        """Basic write and read back."""
        target = tmp_path / "output.txt"
        atomic_write_sync(target, "hello world")
        assert target.read_text() == "hello world"

    def test_creates_file_bytes(self, tmp_path):
        target = tmp_path / "output.bin"
        atomic_write_sync(target, b"\x00\x01\x02\x03")
        assert target.read_bytes() == b"\x00\x01\x02\x03"

    def test_overwrites_existing(self, tmp_path):
        """Atomic replacement of an existing file."""
        target = tmp_path / "output.txt"
        target.write_text("old content")
        atomic_write_sync(target, "new content")
        assert target.read_text() == "new content"

    @pytest.mark.skipif(sys.platform == "win32", reason="symlinks need admin on Windows")
    def test_rejects_symlink_target(self, tmp_path):
        """A symlink at the target path is refused; the link target is untouched."""
        real = tmp_path / "real.txt"
        real.write_text("original")
        link = tmp_path / "link.txt"
        os.symlink(str(real), str(link))

        with pytest.raises(SymlinkTargetError, match="symlink"):
            atomic_write_sync(link, "injected")

        assert real.read_text() == "original"

    def test_symlink_error_is_an_oserror(self):
        assert issubclass(SymlinkTargetError, OSError)

    def test_cleans_up_on_failure(self, tmp_path):
        """A failed write leaves no temp file behind."""
        missing_parent = tmp_path / "nonexistent" / "output.txt"
        with pytest.raises(FileNotFoundError):
            atomic_write_sync(missing_parent, "data")

        assert list(tmp_path.glob(".*tmp*")) == []

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions only")
    def test_sets_permissions(self, tmp_path):
        target = tmp_path / "private.txt"
        atomic_write_sync(target, "data", mode=0o600)
        assert stat.S_IMODE(os.stat(target).st_mode) == 0o600

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions only")
    def test_default_permissions(self, tmp_path):
        target = tmp_path / "public.txt"
        atomic_write_sync(target, "data")
        assert stat.S_IMODE(os.stat(target).st_mode) == 0o644

    def test_large_payload_exact_content(self, tmp_path):
        """A multi-megabyte payload is written byte-for-byte."""
        target = tmp_path / "large.bin"
        payload = bytes(range(256)) * (5 * 1024 * 1024 // 256)
        atomic_write_sync(target, payload)
        assert target.read_bytes() == payload

    def test_no_temp_file_left_on_success(self, tmp_path):
        target = tmp_path / "clean.txt"
        atomic_write_sync(target, "data")
        assert [p.name for p in tmp_path.iterdir()] == ["clean.txt"]


# ---------------------------------------------------------------------------
# atomic_write_text_sync
# ---------------------------------------------------------------------------


class TestAtomicWriteTextSync:

    def test_writes_text(self, tmp_path):
        target = tmp_path / "text.txt"
        atomic_write_text_sync(target, "hello world")
        assert target.read_text(encoding="utf-8") == "hello world"

    def test_writes_unicode(self, tmp_path):
        """Non-ASCII content is encoded as UTF-8."""
        target = tmp_path / "unicode.txt"
        content = "résumé ✔ 日本"
        atomic_write_text_sync(target, content)
        assert target.read_bytes() == content.encode("utf-8")

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions only")
    def test_respects_mode(self, tmp_path):
        target = tmp_path / "secret.txt"
        atomic_write_text_sync(target, "secret", mode=0o600)
        assert stat.S_IMODE(os.stat(target).st_mode) == 0o600
