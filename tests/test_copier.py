"""
Unit Tests for the Transfer Copier
"""

import asyncio
import errno

import pytest

from mirror_sync.copier import TransferCopier
from mirror_sync.retry import RetryPolicy


class TestTransferCopier:
    """Test suite for TransferCopier."""

    def test_copy_creates_parent_folders(self, tmp_path):
        source = tmp_path / "src" / "a.txt"
        source.parent.mkdir()
        source.write_bytes(b"0123456789")
        target = tmp_path / "dst" / "deep" / "er" / "a.txt"

        written = asyncio.run(TransferCopier(RetryPolicy(delay=0)).copy(source, target))

        assert written == 10
        assert target.read_bytes() == b"0123456789"
        assert source.exists()

    def test_existing_target_folder_is_not_an_error(self, tmp_path):
        source = tmp_path / "a.txt"
        source.write_bytes(b"new")
        target = tmp_path / "dst" / "a.txt"
        target.parent.mkdir()
        target.write_bytes(b"old content")

        asyncio.run(TransferCopier(RetryPolicy(delay=0)).copy(source, target))

        assert target.read_bytes() == b"new"

    def test_locked_source_is_retried(self, tmp_path, monkeypatch):
        source = tmp_path / "a.txt"
        source.write_bytes(b"payload")
        target = tmp_path / "dst" / "a.txt"
        real_copy = TransferCopier._copy_blocking
        attempts = []

        def busy_then_ok(src, dst):
            attempts.append(src)
            if len(attempts) < 3:
                raise OSError(errno.EBUSY, "Device or resource busy", str(src))
            return real_copy(src, dst)

        monkeypatch.setattr(TransferCopier, "_copy_blocking", staticmethod(busy_then_ok))

        written = asyncio.run(TransferCopier(RetryPolicy(delay=0.01)).copy(source, target))

        assert len(attempts) == 3
        assert written == len(b"payload")
        assert target.read_bytes() == b"payload"

    def test_connection_reset_is_retried(self, tmp_path, monkeypatch):
        source = tmp_path / "a.txt"
        source.write_bytes(b"payload")
        target = tmp_path / "dst" / "a.txt"
        real_copy = TransferCopier._copy_blocking
        attempts = []

        def reset_once(src, dst):
            attempts.append(src)
            if len(attempts) == 1:
                raise ConnectionResetError(errno.ECONNRESET, "Connection reset by peer")
            return real_copy(src, dst)

        monkeypatch.setattr(TransferCopier, "_copy_blocking", staticmethod(reset_once))

        asyncio.run(TransferCopier(RetryPolicy(delay=0.01)).copy(source, target))

        assert len(attempts) == 2
        assert target.read_bytes() == b"payload"

    def test_other_errors_fail_without_retry(self, tmp_path):
        missing = tmp_path / "missing.txt"

        with pytest.raises(FileNotFoundError):
            asyncio.run(
                TransferCopier(RetryPolicy(delay=0.01)).copy(missing, tmp_path / "dst" / "x")
            )
