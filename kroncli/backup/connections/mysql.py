"""
MySQL connection using mysqldump.
"""

from typing import Dict, List

from .dump import DumpConnection


class MySQLConnection(DumpConnection):
    """
    Backend for MySQL/MariaDB servers.

    Produces one ``<database>.sql`` per target. The password travels in
    MYSQL_PWD, never on the command line.
    """

    database_type = 'mysql'
    display_name = 'MySQL'
    dump_program = 'mysqldump'
    client_program = 'mysql'
    file_extension = 'sql'
    dump_to_stdout = True

    # SQL text is larger than the on-disk table data
    size_overhead = 1.2

    def _client_env(self) -> Dict[str, str]:
        return {'MYSQL_PWD': self.config.password}

    def _connection_args(self) -> List[str]:
        return [
            f"--host={self.config.host}",
            f"--port={self.config.port}",
            f"--user={self.config.user}",
        ]

    def _client(self, sql: str) -> List[str]:
        return [self.client_program] + self._connection_args() + [
            '--batch',
            '--skip-column-names',
            f"--execute={sql}",
        ]

    def _probe_args(self) -> List[str]:
        return self._client('SELECT 1')

    def _size_args(self, database: str) -> List[str]:
        return self._client(
            "SELECT COALESCE(SUM(data_length + index_length), 0) "
            f"FROM information_schema.tables WHERE table_schema = '{database}'"
        )

    def _version_args(self, database: str) -> List[str]:
        return self._client('SELECT VERSION()')

    def _dump_args(self, database: str, output_path: str) -> List[str]:
        return [self.dump_program] + self._connection_args() + [
            '--single-transaction',  # Consistent snapshot for InnoDB
            '--routines',
            '--triggers',
            '--events',
            '--create-options',
            '--quick',
            '--hex-blob',
            '--add-drop-database',
        ] + list(self.config.options) + ['--databases', database]
