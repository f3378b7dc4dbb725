"""
SQLite connection using the online backup API.

The copy runs page by page from a read-only source connection, so the output
is a consistent snapshot even while other processes write to the source.
"""

import os
import sqlite3
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

from kroncli.models import BackendConfig, ConnectionStatus, DatabaseDescriptor
from kroncli.utils.atomic import atomic_output
from ..errors import ConfigError, StagingIOError, ExecutionFailedError
from .base import Connection

# Pages copied per backup step; the deadline is checked between steps
PAGES_PER_STEP = 256


class SQLiteConnection(Connection):
    """
    Backend for SQLite database files in one directory.

    Each target is a file name relative to ``config.directory``; the backup
    keeps that file name in the destination.
    """

    database_type = 'sqlite'
    size_overhead = 1.0

    @property
    def directory(self) -> Path:
        return Path(self.config.directory).expanduser()

    def _db_path(self, name: str) -> Path:
        return self.directory / name

    def _open_readonly(self, db_path: Path) -> sqlite3.Connection:
        uri = f"file:{quote(str(db_path))}?mode=ro"
        return sqlite3.connect(uri, uri=True, timeout=self.context.probe_timeout)

    def is_valid_target(self, name: str) -> bool:
        # Any file name in the directory; no path components
        return bool(name) and os.path.basename(name) == name and name not in ('.', '..')

    def validate_config(self, config: Optional[BackendConfig] = None) -> None:
        config = config or self.config
        if not config.directory:
            raise ConfigError(
                "SQLite directory path cannot be empty",
                backend=self.database_type
            )
        self._validate_targets(config)

        directory = Path(config.directory).expanduser()
        if not directory.is_dir():
            raise ConfigError(
                f"SQLite directory does not exist: {config.directory}",
                backend=self.database_type
            )
        if not os.access(directory, os.R_OK | os.X_OK):
            raise ConfigError(
                f"SQLite directory is not readable: {config.directory}",
                backend=self.database_type
            )

        for name in config.databases:
            db_path = directory / name
            if not db_path.is_file():
                raise ConfigError(
                    f"SQLite database file does not exist: {db_path}",
                    backend=self.database_type
                )

    def test_connection(self) -> ConnectionStatus:
        for name in self.targets:
            db_path = self._db_path(name)
            if not db_path.exists():
                return ConnectionStatus.disconnected(f"Database file not found: {db_path}")
            try:
                conn = self._open_readonly(db_path)
                try:
                    # Opening is lazy; reading the schema proves it is a database
                    conn.execute('SELECT count(*) FROM sqlite_master').fetchone()
                finally:
                    conn.close()
            except sqlite3.Error as e:
                return ConnectionStatus.error(f"Failed to open {name}: {e}")
        return ConnectionStatus.connected()

    def get_database_info(self) -> List[DatabaseDescriptor]:
        info = []

        for name in self.targets:
            db_path = self._db_path(name)
            size = None
            version = None

            try:
                size = db_path.stat().st_size
                conn = self._open_readonly(db_path)
                try:
                    version = conn.execute('SELECT sqlite_version()').fetchone()[0]
                finally:
                    conn.close()
            except (OSError, sqlite3.Error) as e:
                self.log.warning(f"Failed to inspect {name}: {e}")

            info.append(DatabaseDescriptor(name=name, size_bytes=size, version=version))

        return info

    def backup(self, destination_path: str) -> List[str]:
        try:
            os.makedirs(destination_path, exist_ok=True)
        except OSError as e:
            raise StagingIOError(
                f"Failed to create {destination_path}: {e}",
                backend=self.database_type
            )

        written = []
        for name in self.targets:
            final_path = os.path.join(destination_path, name)
            self.log.info(f"Backing up {name}")
            self._backup_file(self._db_path(name), final_path)
            written.append(final_path)

        return written

    def _backup_file(self, source_path: Path, final_path: str):
        def progress(status, remaining, total):
            self.context.check_deadline()

        try:
            with atomic_output(final_path) as temp_path:
                source = self._open_readonly(source_path)
                try:
                    dest = sqlite3.connect(temp_path)
                    try:
                        source.backup(dest, pages=PAGES_PER_STEP, progress=progress)
                    finally:
                        dest.close()
                finally:
                    source.close()
        except sqlite3.Error as e:
            raise ExecutionFailedError(
                f"SQLite backup of {source_path.name} failed",
                backend=self.database_type,
                stderr=str(e)
            )
        except OSError as e:
            raise StagingIOError(
                f"Failed to write {final_path}: {e}",
                backend=self.database_type
            )
