"""
MongoDB connection using mongodump and mongosh.

Neither tool reads a password from the environment, so secrets are kept out of
argument text differently per tool: mongosh gets the connection string through
an environment variable read by the eval script, mongodump gets the password
from a private YAML file passed with --config.
"""

import os
import json
import tempfile
from typing import Dict, List
from urllib.parse import quote_plus

from .dump import DumpConnection

URI_ENV = 'KRONCLI_MONGO_URI'


class MongoDBConnection(DumpConnection):
    """
    Backend for MongoDB servers.

    Produces one gzipped ``<database>.archive.gz`` per target, restorable with
    ``mongorestore --archive --gzip``.
    """

    database_type = 'mongodb'
    display_name = 'MongoDB'
    dump_program = 'mongodump'
    client_program = 'mongosh'
    file_extension = 'archive.gz'
    dump_to_stdout = False
    require_password = True

    # BSON plus per-document overhead
    size_overhead = 1.25

    _secret_file = None

    def _uri(self) -> str:
        return (
            f"mongodb://{quote_plus(self.config.user)}:{quote_plus(self.config.password)}"
            f"@{self.config.host}:{self.config.port}/"
            f"?authSource={quote_plus(self.config.auth_database)}"
        )

    def _client_env(self) -> Dict[str, str]:
        return {URI_ENV: self._uri()}

    def _eval(self, script: str) -> List[str]:
        return [
            self.client_program,
            '--nodb',
            '--quiet',
            '--eval',
            f"const conn = connect(process.env.{URI_ENV}); {script}",
        ]

    def _probe_args(self) -> List[str]:
        return self._eval('print(conn.runCommand({ping: 1}).ok)')

    def _size_args(self, database: str) -> List[str]:
        return self._eval(f"print(conn.getSiblingDB('{database}').stats().dataSize)")

    def _version_args(self, database: str) -> List[str]:
        return self._eval('print(conn.version())')

    def _dump_args(self, database: str, output_path: str) -> List[str]:
        return [
            self.dump_program,
            f"--host={self.config.host}",
            f"--port={self.config.port}",
            f"--username={self.config.user}",
            f"--authenticationDatabase={self.config.auth_database}",
            f"--config={self._secret_file}",
            f"--db={database}",
            f"--archive={output_path}",
            '--gzip',
        ] + list(self.config.options)

    def _dump(self, database: str, final_path: str):
        fd, self._secret_file = tempfile.mkstemp(prefix='kroncli_mongo_', suffix='.yaml')
        try:
            with os.fdopen(fd, 'w') as f:
                # A JSON string is a valid YAML double-quoted scalar
                f.write(f"password: {json.dumps(self.config.password)}\n")
            super()._dump(database, final_path)
        finally:
            os.remove(self._secret_file)
            self._secret_file = None
