"""
Base connection defining the contract every backend implements.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from kroncli.models import BackendConfig, ConnectionStatus, DatabaseDescriptor
from ..context import BackupContext
from ..errors import ConfigError

logger = logging.getLogger(__name__)


class Connection(ABC):
    """
    Abstract base class for backend connections.

    One instance per backend per run. Subclasses set ``database_type`` and
    ``size_overhead`` and implement the abstract methods.
    """

    database_type: str = ''
    size_overhead: float = 1.0

    def __init__(self, config: BackendConfig, context: Optional[BackupContext] = None):
        self.config = config
        self.context = context or BackupContext()

    @property
    def log(self) -> logging.Logger:
        return self.context.logger

    @property
    def targets(self) -> List[str]:
        return list(self.config.databases)

    @abstractmethod
    def validate_config(self, config: Optional[BackendConfig] = None) -> None:
        """
        Check the fields this backend's mechanism needs, without any I/O to the backend.

        Raises:
            ConfigError: If a required field is missing or invalid
        """

    @abstractmethod
    def test_connection(self) -> ConnectionStatus:
        """Probe reachability. Connectivity failures are returned, not raised."""

    @abstractmethod
    def get_database_info(self) -> List[DatabaseDescriptor]:
        """One descriptor per target; unknown sizes are None."""

    @abstractmethod
    def backup(self, destination_path: str) -> List[str]:
        """
        Back up every target into ``destination_path``.

        Returns:
            Final paths of the files written
        """

    def estimate_backup_size(self) -> int:
        """
        Expected size of the backup output in bytes.

        Never raises; returns 0 when nothing is known.
        """
        if not self.targets:
            return 0
        try:
            descriptors = self.get_database_info()
        except Exception as e:
            self.log.warning(f"Size estimate unavailable: {e}")
            return 0
        return self.estimate_from_descriptors(descriptors)

    def estimate_from_descriptors(self, descriptors: List[DatabaseDescriptor]) -> int:
        """Size estimate from already collected descriptors, without new I/O."""
        total = sum(d.size_bytes for d in descriptors if d.size_bytes)
        return int(total * self.size_overhead)

    def is_valid_target(self, name: str) -> bool:
        """Whether a target name is acceptable for this backend."""
        return bool(name)

    def _validate_targets(self, config: BackendConfig):
        if not config.databases:
            raise ConfigError(
                "At least one database must be specified",
                backend=self.database_type
            )
        for name in config.databases:
            if not self.is_valid_target(name):
                raise ConfigError(
                    f"Invalid database name: {name!r}",
                    backend=self.database_type
                )

    def __repr__(self):
        return f'<{self.__class__.__name__} targets={self.targets}>'
