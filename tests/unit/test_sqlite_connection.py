"""
Unit tests for the SQLite connection (kroncli/backup/connections/sqlite.py).

Runs against real database files created in tmp_path.
"""

import os
import sqlite3
import time

import pytest

from kroncli.models import BackendConfig, ConnectionState
from kroncli.backup.context import BackupContext
from kroncli.backup.connections import SQLiteConnection
from kroncli.backup.errors import BackupTimeoutError, ConfigError


def _rows(path):
    conn = sqlite3.connect(path)
    try:
        return [row[0] for row in conn.execute('SELECT name FROM items ORDER BY id')]
    finally:
        conn.close()


class TestValidateConfig:

    def test_valid(self, sqlite_config, context):
        SQLiteConnection(sqlite_config, context).validate_config()

    def test_empty_directory(self, context):
        connection = SQLiteConnection(BackendConfig(databases=['app.db']), context)

        with pytest.raises(ConfigError, match='cannot be empty'):
            connection.validate_config()

    def test_missing_directory(self, tmp_path, context):
        config = BackendConfig(path=str(tmp_path / 'missing'), databases=['app.db'])

        with pytest.raises(ConfigError, match='does not exist'):
            SQLiteConnection(config, context).validate_config()

    def test_missing_file(self, sqlite_dir, context):
        config = BackendConfig(path=str(sqlite_dir), databases=['app.db', 'ghost.db'])

        with pytest.raises(ConfigError, match='ghost.db'):
            SQLiteConnection(config, context).validate_config()

    @pytest.mark.parametrize('name', ['../etc/passwd', 'a/b.db', '', '..', '.'])
    def test_rejects_unsafe_names(self, sqlite_dir, context, name):
        config = BackendConfig(path=str(sqlite_dir), databases=[name])

        with pytest.raises(ConfigError):
            SQLiteConnection(config, context).validate_config()

    def test_no_databases(self, sqlite_dir, context):
        config = BackendConfig(path=str(sqlite_dir), databases=[])

        with pytest.raises(ConfigError, match='At least one database'):
            SQLiteConnection(config, context).validate_config()


class TestTestConnection:

    def test_connected(self, sqlite_config, context):
        status = SQLiteConnection(sqlite_config, context).test_connection()

        assert status.is_connected

    def test_missing_file_disconnected(self, sqlite_dir, context):
        config = BackendConfig(path=str(sqlite_dir), databases=['gone.db'])

        status = SQLiteConnection(config, context).test_connection()

        assert status.state is ConnectionState.DISCONNECTED

    def test_not_a_database(self, sqlite_dir, context):
        (sqlite_dir / 'junk.db').write_bytes(b'this is not sqlite' * 100)
        config = BackendConfig(path=str(sqlite_dir), databases=['junk.db'])

        status = SQLiteConnection(config, context).test_connection()

        assert status.state is ConnectionState.ERROR
        assert 'junk.db' in status.detail


class TestDatabaseInfo:

    def test_descriptors(self, sqlite_config, sqlite_dir, context):
        info = SQLiteConnection(sqlite_config, context).get_database_info()

        assert [d.name for d in info] == ['app.db', 'users.db']
        assert info[0].size_bytes == os.path.getsize(sqlite_dir / 'app.db')
        assert info[0].version == sqlite3.sqlite_version

    def test_estimate_is_file_size(self, sqlite_config, sqlite_dir, context):
        expected = os.path.getsize(sqlite_dir / 'app.db') + os.path.getsize(sqlite_dir / 'users.db')

        assert SQLiteConnection(sqlite_config, context).estimate_backup_size() == expected

    def test_estimate_empty_targets(self, sqlite_dir, context):
        config = BackendConfig(path=str(sqlite_dir), databases=[])

        assert SQLiteConnection(config, context).estimate_backup_size() == 0


class TestBackup:

    def test_backup_keeps_file_names(self, sqlite_config, context, tmp_path):
        destination = tmp_path / 'staging' / 'sqlite'

        written = SQLiteConnection(sqlite_config, context).backup(str(destination))

        assert written == [str(destination / 'app.db'), str(destination / 'users.db')]
        assert _rows(destination / 'app.db') == ['alpha', 'beta', 'gamma']
        assert _rows(destination / 'users.db') == ['alice', 'bob']
        assert sorted(os.listdir(destination)) == ['app.db', 'users.db']

    def test_backup_leaves_source_untouched(self, sqlite_config, sqlite_dir, context, tmp_path):
        before = (sqlite_dir / 'app.db').read_bytes()

        SQLiteConnection(sqlite_config, context).backup(str(tmp_path / 'out'))

        assert (sqlite_dir / 'app.db').read_bytes() == before

    def test_backup_consistent_with_open_writer(self, sqlite_config, sqlite_dir, context, tmp_path):
        writer = sqlite3.connect(sqlite_dir / 'app.db')
        try:
            writer.execute("INSERT INTO items (name) VALUES ('delta')")
            writer.commit()
            writer.execute('BEGIN')
            writer.execute("INSERT INTO items (name) VALUES ('uncommitted')")

            SQLiteConnection(sqlite_config, context).backup(str(tmp_path / 'out'))
        finally:
            writer.rollback()
            writer.close()

        assert _rows(tmp_path / 'out' / 'app.db') == ['alpha', 'beta', 'gamma', 'delta']

    def test_backup_names_with_spaces_and_unicode(self, sqlite_dir, context, tmp_path):
        for name in ('my app.db', 'données.db'):
            conn = sqlite3.connect(sqlite_dir / name)
            conn.execute('CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT)')
            conn.execute("INSERT INTO items (name) VALUES ('only')")
            conn.commit()
            conn.close()
        config = BackendConfig(path=str(sqlite_dir), databases=['my app.db', 'données.db'])
        connection = SQLiteConnection(config, context)

        connection.validate_config()
        assert connection.test_connection().is_connected
        connection.backup(str(tmp_path / 'out'))

        assert _rows(tmp_path / 'out' / 'my app.db') == ['only']
        assert _rows(tmp_path / 'out' / 'données.db') == ['only']

    def test_deadline_aborts_without_partial_file(self, sqlite_config, fake_runner, tmp_path):
        context = BackupContext(runner=fake_runner, timeout=1)
        context.deadline = time.monotonic() - 1
        destination = tmp_path / 'out'

        with pytest.raises(BackupTimeoutError):
            SQLiteConnection(sqlite_config, context).backup(str(destination))

        assert os.listdir(destination) == []
