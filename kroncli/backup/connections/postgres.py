"""
PostgreSQL connection using pg_dump.
"""

from typing import Dict, List

from .dump import DumpConnection


class PostgresConnection(DumpConnection):
    """
    Backend for PostgreSQL servers.

    Produces one custom-format ``<database>.dump`` per target, restorable with
    pg_restore. The password travels in PGPASSWORD.
    """

    database_type = 'postgres'
    display_name = 'PostgreSQL'
    dump_program = 'pg_dump'
    client_program = 'psql'
    file_extension = 'dump'
    dump_to_stdout = False
    size_overhead = 1.15

    def _client_env(self) -> Dict[str, str]:
        return {'PGPASSWORD': self.config.password}

    def _connection_args(self) -> List[str]:
        return [
            f"--host={self.config.host}",
            f"--port={self.config.port}",
            f"--username={self.config.user}",
            '--no-password',  # Never prompt; PGPASSWORD or fail
        ]

    def _client(self, database: str, sql: str) -> List[str]:
        return [self.client_program] + self._connection_args() + [
            f"--dbname={database}",
            '--tuples-only',
            '--no-align',
            f"--command={sql}",
        ]

    def _probe_args(self) -> List[str]:
        return self._client(self.targets[0] if self.targets else 'postgres', 'SELECT 1')

    def _size_args(self, database: str) -> List[str]:
        return self._client(database, 'SELECT pg_database_size(current_database())')

    def _version_args(self, database: str) -> List[str]:
        return self._client(database, 'SHOW server_version')

    def _dump_args(self, database: str, output_path: str) -> List[str]:
        return [self.dump_program] + self._connection_args() + [
            f"--dbname={database}",
            '--format=custom',
            '--clean',
            '--create',
            '--if-exists',
        ] + list(self.config.options) + [f"--file={output_path}"]
