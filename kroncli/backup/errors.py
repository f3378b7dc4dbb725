"""
Error taxonomy for backup runs.

Per-backend errors (ConfigError through StagingIOError) are caught by the
orchestrator and recorded as failed results. PackagingError and "no backend
succeeded" end the run with RunFailedError.
"""

from typing import Optional


class BackupError(Exception):
    """Base class for every backup failure. Carries the originating backend id."""

    kind = 'BackupError'

    def __init__(self, message: str, backend: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.backend = backend
        self.detail = detail

    def __str__(self):
        text = self.message
        if self.detail and self.detail not in text:
            text = f"{text}: {self.detail}"
        return text


class ConfigError(BackupError):
    """Raised when a backend configuration is missing or has an invalid field."""
    kind = 'ConfigError'


class ConnectivityError(BackupError):
    """Raised when a backend is unreachable or rejects the credentials."""
    kind = 'ConnectivityError'


class ToolMissingError(BackupError):
    """Raised when an external dump or client program is not on PATH."""
    kind = 'ToolMissingError'

    def __init__(self, program: str, backend: Optional[str] = None):
        super().__init__(f"Required program not found on PATH: {program}", backend=backend)
        self.program = program


class ExecutionFailedError(BackupError):
    """Raised when an external program exits nonzero or produces unusable output."""
    kind = 'ExecutionFailedError'

    def __init__(
        self,
        message: str,
        backend: Optional[str] = None,
        returncode: Optional[int] = None,
        stderr: str = ''
    ):
        super().__init__(message, backend=backend, detail=stderr.strip() or None)
        self.returncode = returncode
        self.stderr = stderr


class BackupTimeoutError(BackupError):
    """Raised when a backend operation runs past its deadline."""
    kind = 'BackupTimeoutError'


class StagingIOError(BackupError):
    """Raised when writing staging output or the archive fails at the OS level."""
    kind = 'StagingIOError'


class PackagingError(BackupError):
    """Raised when archive creation fails."""
    kind = 'PackagingError'


class UnsupportedTypeError(BackupError):
    """Raised when no connection class is registered for a backend type."""
    kind = 'UnsupportedTypeError'


class StorageError(BackupError):
    """Raised when publishing an archive to remote storage fails."""
    kind = 'StorageError'


class RunFailedError(Exception):
    """
    Raised when a run produces no archive.

    Either no backend succeeded or packaging failed. ``results`` holds every
    backend's BackupResult in configuration order.
    """

    def __init__(self, message: str, results=None, cause: Optional[BaseException] = None):
        self.message = message
        self.results = list(results or [])
        self.cause = cause
        super().__init__(self._render())

    @property
    def failures(self):
        return [r for r in self.results if r.failed]

    def _render(self) -> str:
        lines = [self.message]
        for result in self.failures:
            lines.append(f"  - {result.backend}: [{result.error_kind}] {result.reason}")
        if self.cause is not None:
            lines.append(f"  cause: {self.cause}")
        return '\n'.join(lines)
