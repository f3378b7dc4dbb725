from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class BackupStatus(str, Enum):
    SUCCESS = 'success'
    FAILED = 'failed'
    SKIPPED = 'skipped'


class ConnectionState(str, Enum):
    CONNECTED = 'connected'
    DISCONNECTED = 'disconnected'
    ERROR = 'error'


class BackendState(str, Enum):
    """Per-backend progress through one run"""
    PENDING = 'pending'
    VALIDATING = 'validating'
    TESTING = 'testing'
    ESTIMATING = 'estimating'
    BACKING_UP = 'backing_up'
    DONE = 'done'


@dataclass
class BackendConfig:
    """
    Connection parameters for one backend.

    SQLite reads ``path`` (falling back to ``host``) as the directory holding
    the database files. Server backends read host, port, user and password.
    ``databases`` is the target list for both.
    """
    host: str = ''
    port: int = 0
    user: str = ''
    password: str = field(default='', repr=False)
    databases: List[str] = field(default_factory=list)
    path: Optional[str] = None
    auth_database: str = 'admin'
    options: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'BackendConfig':
        """Build from a config-file section. Unknown keys are ignored."""
        databases = data.get('databases', data.get('targets')) or []
        if isinstance(databases, str):
            databases = [databases]
        port = data.get('port') or 0
        return cls(
            host=str(data.get('host') or ''),
            port=int(port),
            user=str(data.get('user') or data.get('username') or ''),
            password=str(data.get('password') or ''),
            databases=[str(name) for name in databases],
            path=data.get('path'),
            auth_database=str(data.get('auth_database') or 'admin'),
            options=[str(opt) for opt in data.get('options') or []],
        )

    @property
    def directory(self) -> str:
        return self.path or self.host


@dataclass(frozen=True)
class DatabaseDescriptor:
    """Introspected metadata about one target database"""
    name: str
    size_bytes: Optional[int] = None
    version: Optional[str] = None

    def __str__(self):
        size = f"{self.size_bytes} bytes" if self.size_bytes is not None else 'unknown size'
        return f"{self.name} ({size})"


@dataclass(frozen=True)
class ConnectionStatus:
    state: ConnectionState
    detail: str = ''

    @classmethod
    def connected(cls) -> 'ConnectionStatus':
        return cls(ConnectionState.CONNECTED)

    @classmethod
    def disconnected(cls, detail: str = '') -> 'ConnectionStatus':
        return cls(ConnectionState.DISCONNECTED, detail)

    @classmethod
    def error(cls, detail: str) -> 'ConnectionStatus':
        return cls(ConnectionState.ERROR, detail)

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED


@dataclass(frozen=True)
class BackupResult:
    """Outcome of one backend in one run"""
    backend: str
    status: BackupStatus
    started_at: datetime
    completed_at: datetime
    reason: str = ''
    error_kind: Optional[str] = None
    bytes_written: int = 0
    staging_path: Optional[str] = None
    estimated_bytes: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status is BackupStatus.SUCCESS

    @property
    def failed(self) -> bool:
        return self.status is BackupStatus.FAILED

    @property
    def elapsed_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def __repr__(self):
        return f'<BackupResult {self.backend} status={self.status.value}>'


@dataclass(frozen=True)
class ArchiveInfo:
    path: str
    uncompressed_bytes: int
    file_count: int
    compressed_bytes: int


@dataclass
class RunReport:
    """Everything a finished run hands to logging and notification layers"""
    results: List[BackupResult]
    archive: ArchiveInfo
    started_at: datetime
    completed_at: datetime
    logs: List[str] = field(default_factory=list)
    remote_key: Optional[str] = None
    upload_error: Optional[str] = None

    @property
    def succeeded(self) -> List[BackupResult]:
        return [r for r in self.results if r.succeeded]

    @property
    def failed(self) -> List[BackupResult]:
        return [r for r in self.results if r.failed]

    def as_dict(self) -> Dict[str, Any]:
        return {
            'archive': self.archive.path,
            'uncompressed_bytes': self.archive.uncompressed_bytes,
            'remote_key': self.remote_key,
            'results': [
                {
                    'backend': r.backend,
                    'status': r.status.value,
                    'reason': r.reason,
                    'error_kind': r.error_kind,
                    'bytes_written': r.bytes_written,
                    'elapsed_seconds': r.elapsed_seconds,
                }
                for r in self.results
            ],
        }
