"""
Unit tests for write-then-rename helpers (kroncli/utils/atomic.py) and run deadlines.
"""

import os
import time
from unittest.mock import patch

import pytest

from kroncli.utils.atomic import atomic_output, is_temp_artifact
from kroncli.backup.context import BackupContext
from kroncli.backup.errors import BackupTimeoutError


class TestAtomicOutput:

    def test_publishes_on_success(self, tmp_path):
        final = tmp_path / 'out' / 'db.sql'

        with atomic_output(str(final)) as temp_path:
            assert is_temp_artifact(os.path.basename(temp_path))
            with open(temp_path, 'w') as f:
                f.write('data')
            assert not final.exists()

        assert final.read_text() == 'data'
        assert os.listdir(final.parent) == ['db.sql']

    def test_removes_temp_on_error(self, tmp_path):
        final = tmp_path / 'db.sql'

        with pytest.raises(RuntimeError):
            with atomic_output(str(final)) as temp_path:
                with open(temp_path, 'w') as f:
                    f.write('partial')
                raise RuntimeError('interrupted')

        assert os.listdir(tmp_path) == []

    def test_refuses_overwrite(self, tmp_path):
        final = tmp_path / 'archive.tar.gz'
        final.write_bytes(b'old')

        with pytest.raises(FileExistsError):
            with atomic_output(str(final), overwrite=False):
                pass

        assert final.read_bytes() == b'old'
        assert os.listdir(tmp_path) == ['archive.tar.gz']

    def test_concurrent_writer_is_never_clobbered(self, tmp_path):
        final = tmp_path / 'archive.tar.gz'

        # Another process publishes the same name while ours is still writing,
        # and no existence check can see it in time
        with patch('kroncli.utils.atomic.os.path.exists', return_value=False):
            with pytest.raises(FileExistsError):
                with atomic_output(str(final), overwrite=False) as temp_path:
                    with open(temp_path, 'wb') as f:
                        f.write(b'ours')
                    final.write_bytes(b'theirs')

        assert final.read_bytes() == b'theirs'
        assert os.listdir(tmp_path) == ['archive.tar.gz']


class TestBackupContext:

    def test_no_deadline(self):
        context = BackupContext()
        context.start_deadline()

        assert context.remaining() is None
        assert context.remaining(cap=5) == 5

    def test_remaining_is_capped(self):
        context = BackupContext(timeout=100)
        context.start_deadline()

        assert context.remaining(cap=5) == 5
        assert 99 < context.remaining() <= 100

    def test_expired_deadline(self):
        context = BackupContext(timeout=10)
        context.deadline = time.monotonic() - 1

        with pytest.raises(BackupTimeoutError):
            context.check_deadline()

    def test_for_backend_resets_deadline(self):
        context = BackupContext(timeout=10)
        context.deadline = time.monotonic() - 1

        child = context.for_backend('mysql')

        assert child.deadline is None
        assert child.runner is context.runner
        assert child.logger.name == 'kroncli.backup.mysql'
