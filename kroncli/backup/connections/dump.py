"""
Shared base for server backends backed by an external dump program.
"""

import os
import re
from abc import abstractmethod
from typing import Dict, List, Optional, Tuple

from kroncli.models import BackendConfig, ConnectionStatus, DatabaseDescriptor
from kroncli.utils.atomic import atomic_output
from ..errors import BackupError, BackupTimeoutError, ConfigError, StagingIOError, ToolMissingError
from ..runner import ProcessResult
from .base import Connection

# Target names end up in SQL/JS string literals and in file names
_SAFE_TARGET = re.compile(r'^[A-Za-z0-9_][A-Za-z0-9_.$-]*$')


class DumpConnection(Connection):
    """
    Base class for MySQL, PostgreSQL and MongoDB.

    Subclasses describe their programs and argument sets; this class handles
    probing, descriptor collection, deadlines and the write-then-rename of
    every dump file.
    """

    dump_program: str = ''
    client_program: str = ''
    file_extension: str = ''
    display_name: str = ''

    # True when the dump program writes to stdout, False when it takes an output path
    dump_to_stdout: bool = True

    require_password: bool = False

    # ---- subclass hooks ------------------------------------------------

    @abstractmethod
    def _client_env(self) -> Dict[str, str]:
        """Environment carrying the secret for client and dump programs."""

    @abstractmethod
    def _probe_args(self) -> List[str]:
        """Client invocation for a lightweight round trip."""

    @abstractmethod
    def _size_args(self, database: str) -> List[str]:
        """Client invocation printing the database size in bytes."""

    @abstractmethod
    def _version_args(self, database: str) -> List[str]:
        """Client invocation printing the server version."""

    @abstractmethod
    def _dump_args(self, database: str, output_path: str) -> List[str]:
        """Dump invocation for one database."""

    def _parse_size(self, output: str) -> Optional[int]:
        for line in output.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                return int(float(line))
            except ValueError:
                return None
        return None

    def _parse_version(self, output: str) -> Optional[str]:
        for line in output.splitlines():
            if line.strip():
                return line.strip().strip('"')
        return None

    # ---- contract --------------------------------------------------------

    def is_valid_target(self, name: str) -> bool:
        return bool(_SAFE_TARGET.match(name)) and '..' not in name

    def validate_config(self, config: Optional[BackendConfig] = None) -> None:
        config = config or self.config
        name = self.display_name or self.database_type

        if not config.host:
            raise ConfigError(f"{name} host cannot be empty", backend=self.database_type)
        if not config.port or not 0 < int(config.port) < 65536:
            raise ConfigError(
                f"{name} port must be between 1 and 65535, got {config.port}",
                backend=self.database_type
            )
        if not config.user:
            raise ConfigError(f"{name} user cannot be empty", backend=self.database_type)
        if self.require_password and not config.password:
            raise ConfigError(f"{name} password cannot be empty", backend=self.database_type)
        self._validate_targets(config)

    def test_connection(self) -> ConnectionStatus:
        """
        Run the client's round-trip query.

        Missing programs raise ToolMissingError; everything else becomes a status.
        """
        self.context.runner.require(self.dump_program)
        self.context.runner.require(self.client_program)

        try:
            result = self._run(self._probe_args(), cap=self.context.probe_timeout)
        except ToolMissingError:
            raise
        except BackupTimeoutError as e:
            # Past the backend deadline this is a timeout, otherwise an unreachable server
            self.context.check_deadline()
            return ConnectionStatus.error(str(e))
        except BackupError as e:
            return ConnectionStatus.error(str(e))

        if result.returncode != 0:
            detail = result.stderr_text.strip() or f"exit code {result.returncode}"
            return ConnectionStatus.error(detail)
        return ConnectionStatus.connected()

    def get_database_info(self) -> List[DatabaseDescriptor]:
        info = []
        for database in self.targets:
            size, version = self._describe(database)
            info.append(DatabaseDescriptor(name=database, size_bytes=size, version=version))
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
        for database in self.targets:
            final_path = os.path.join(destination_path, f"{database}.{self.file_extension}")
            self.log.info(f"Dumping {database} with {self.dump_program}")
            self._dump(database, final_path)
            written.append(final_path)
        return written

    # ---- helpers -------------------------------------------------------

    def _run(self, args: List[str], cap: Optional[float] = None,
             stdout_path: Optional[str] = None) -> ProcessResult:
        return self.context.runner.run(
            args,
            env=self._client_env(),
            timeout=self.context.remaining(cap),
            stdout_path=stdout_path
        )

    def _query(self, args: List[str], description: str) -> str:
        result = self._run(args, cap=self.context.probe_timeout)
        result.check(description, backend=self.database_type)
        return result.stdout_text

    def _describe(self, database: str) -> Tuple[Optional[int], Optional[str]]:
        size = None
        version = None
        try:
            size = self._parse_size(self._query(self._size_args(database), f"{self.client_program} size query"))
            version = self._parse_version(self._query(self._version_args(database), f"{self.client_program} version query"))
        except BackupError as e:
            self.log.warning(f"Failed to get stats for database {database}: {e}")
        return size, version

    def _dump(self, database: str, final_path: str):
        try:
            with atomic_output(final_path) as temp_path:
                if self.dump_to_stdout:
                    result = self._run(self._dump_args(database, temp_path), stdout_path=temp_path)
                else:
                    result = self._run(self._dump_args(database, temp_path))
                result.check(f"{self.dump_program} of {database}", backend=self.database_type)
        except BackupError as e:
            e.backend = e.backend or self.database_type
            raise
        except OSError as e:
            raise StagingIOError(
                f"Failed to write {final_path}: {e}",
                backend=self.database_type
            )
