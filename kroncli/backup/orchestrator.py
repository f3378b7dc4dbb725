"""
Backup orchestrator - drives every configured backend through one run.

Workflow:
1. Skip backends with no targets
2. Construct every connection through the factory (unknown types fail here,
   before any backend is attempted)
3. Per backend: validate -> test connection -> estimate -> backup into
   <staging>/<type id>/ (sequential, or on a thread pool)
4. Wait for every backend to reach a terminal state
5. Package the successful backends' staging output into one archive
6. Upload the archive (if remote storage is configured)
7. Cleanup staging
"""

import os
import shutil
import logging
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from kroncli.models import (
    BackendConfig,
    BackendState,
    BackupResult,
    BackupStatus,
    ConnectionStatus,
    RunReport,
)
from .connections import Connection
from .context import BackupContext
from .errors import (
    BackupError,
    BackupTimeoutError,
    ConnectivityError,
    PackagingError,
    RunFailedError,
    StagingIOError,
    StorageError,
)
from .factory import create_connection
from .packager import create_archive
from .storage import S3Storage


class BackupOrchestrator:
    """
    Runs one backup across all configured backends.

    Backends are isolated: an error in one is recorded as its failed result
    and never affects another backend's attempt or staging output.
    """

    def __init__(
        self,
        backends: Mapping[str, BackendConfig],
        output_dir: str,
        archive_prefix: str = 'backup',
        staging_dir: Optional[str] = None,
        context: Optional[BackupContext] = None,
        parallel: bool = False,
        max_workers: int = 4,
        keep_staging: bool = False,
        storage=None,
        storage_prefix: str = 'kroncli',
        connection_factory: Callable[..., Connection] = create_connection
    ):
        """
        Initialize backup orchestrator.

        Args:
            backends: Backend type id -> BackendConfig, in run order
            output_dir: Directory the archive is published into
            archive_prefix: Archive name prefix
            staging_dir: Parent for the staging tree (default: system temp dir)
            context: Run context (runner, logger, per-backend timeout)
            parallel: Run backends concurrently
            max_workers: Thread pool size when parallel
            keep_staging: Leave the staging tree on disk after the run
            storage: Optional uploader with upload(path, prefix) -> key
            storage_prefix: Key prefix passed to the uploader
            connection_factory: Callable(type_id, config, context) -> Connection
        """
        self.backends = dict(backends)
        self.output_dir = output_dir
        self.archive_prefix = archive_prefix
        self.staging_dir = staging_dir
        self.context = context or BackupContext()
        self.parallel = parallel
        self.max_workers = max(1, max_workers)
        self.keep_staging = keep_staging
        self.storage = storage
        self.storage_prefix = storage_prefix
        self.connection_factory = connection_factory

        self.started_at = None
        self.staging_root = None
        self.states: Dict[str, BackendState] = {}
        self.logs: List[str] = []
        self._lock = threading.Lock()

    @property
    def logger(self) -> logging.Logger:
        return self.context.logger

    def execute(self) -> RunReport:
        """
        Execute the run.

        Returns:
            RunReport with every backend's result and the published archive

        Raises:
            RunFailedError: If no backend succeeded or packaging failed
        """
        self.started_at = datetime.now()
        self._log(f"Starting backup run for {len(self.backends)} backend(s)")

        if not self.backends:
            raise RunFailedError("No database configurations found")

        results, connections = self._preflight()

        try:
            if connections:
                self._prepare_staging(results)
                results.update(self._run_backends(connections))

            ordered = [results[type_id] for type_id in self.backends]
            succeeded = [r.backend for r in ordered if r.succeeded]

            if not succeeded:
                self._log("No backend succeeded; no archive produced", logging.ERROR)
                if any(r.failed for r in ordered):
                    raise RunFailedError("All configured backends failed", ordered)
                raise RunFailedError("No backend had databases to back up", ordered)

            archive = self._package(succeeded, ordered)

            report = RunReport(
                results=ordered,
                archive=archive,
                started_at=self.started_at,
                completed_at=datetime.now(),
                logs=self.logs
            )
            self._publish(report)
            self._log(
                f"Run finished: {len(report.succeeded)} succeeded, "
                f"{len(report.failed)} failed, archive {os.path.basename(archive.path)}"
            )
            return report

        finally:
            self._cleanup()

    def check(self) -> List[Tuple[str, ConnectionStatus]]:
        """
        Validate and probe every backend without backing anything up.

        Returns:
            (type id, status) pairs in configuration order
        """
        statuses = []
        for type_id, config in self.backends.items():
            try:
                connection = self.connection_factory(type_id, config, self.context.for_backend(type_id))
                connection.validate_config()
                status = connection.test_connection()
            except BackupError as e:
                status = ConnectionStatus.error(f"[{e.kind}] {e}")
            self._log(f"{type_id}: {status.state.value} {status.detail}".rstrip())
            statuses.append((type_id, status))
        return statuses

    # ---- stages --------------------------------------------------------

    def _preflight(self) -> Tuple[Dict[str, BackupResult], Dict[str, Connection]]:
        """Resolve every backend to a connection, or to a skipped/failed result."""
        results = {}
        connections = {}

        for type_id, config in self.backends.items():
            self.states[type_id] = BackendState.PENDING
            now = datetime.now()

            if not config.databases:
                self._log(f"{type_id}: no databases configured, skipping")
                results[type_id] = BackupResult(
                    backend=type_id,
                    status=BackupStatus.SKIPPED,
                    started_at=now,
                    completed_at=now,
                    reason='no databases configured'
                )
                self.states[type_id] = BackendState.DONE
                continue

            try:
                connections[type_id] = self.connection_factory(
                    type_id, config, self.context.for_backend(type_id)
                )
            except BackupError as e:
                self._log(f"{type_id}: {e}", logging.ERROR)
                results[type_id] = self._failed(type_id, now, e, reason=f"unsupported type: {type_id}")
                self.states[type_id] = BackendState.DONE

        return results, connections

    def _prepare_staging(self, results: Dict[str, BackupResult]):
        """
        Create the staging root for this run.

        Raises:
            RunFailedError: If the staging directory cannot be created
        """
        try:
            if self.staging_dir:
                os.makedirs(self.staging_dir, exist_ok=True)
            self.staging_root = tempfile.mkdtemp(prefix='kroncli_staging_', dir=self.staging_dir)
        except OSError as e:
            self._log(f"Failed to create staging directory: {e}", logging.ERROR)
            raise RunFailedError(
                "Failed to create staging directory",
                [results[type_id] for type_id in self.backends if type_id in results],
                cause=StagingIOError(str(e))
            )
        self._log(f"Staging directory: {self.staging_root}")

    def _run_backends(self, connections: Dict[str, Connection]) -> Dict[str, BackupResult]:
        results = {}

        if not self.parallel or len(connections) == 1:
            for type_id, connection in connections.items():
                results[type_id] = self._run_backend(type_id, connection)
            return results

        workers = min(self.max_workers, len(connections))
        self._log(f"Running {len(connections)} backends on {workers} workers")
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='kroncli') as pool:
            futures = {
                pool.submit(self._run_backend, type_id, connection): type_id
                for type_id, connection in connections.items()
            }
            # Barrier: packaging waits for every backend
            for future in as_completed(futures):
                results[futures[future]] = future.result()

        return results

    def _run_backend(self, type_id: str, connection: Connection) -> BackupResult:
        """Drive one backend to a terminal state. Never raises."""
        started_at = datetime.now()
        destination = os.path.join(self.staging_root, type_id)
        estimated = 0
        connection.context.start_deadline()

        try:
            self._set_state(type_id, BackendState.VALIDATING)
            connection.validate_config()

            self._set_state(type_id, BackendState.TESTING)
            status = connection.test_connection()
            if not status.is_connected:
                raise ConnectivityError(
                    f"Failed to connect to {type_id} database ({status.state.value})",
                    backend=type_id,
                    detail=status.detail or None
                )

            self._set_state(type_id, BackendState.ESTIMATING)
            estimated = self._estimate(type_id, connection)

            self._set_state(type_id, BackendState.BACKING_UP)
            written = connection.backup(destination)

            bytes_written = _directory_size(destination)
            result = BackupResult(
                backend=type_id,
                status=BackupStatus.SUCCESS,
                started_at=started_at,
                completed_at=datetime.now(),
                bytes_written=bytes_written,
                staging_path=destination,
                estimated_bytes=estimated
            )
            self._log(
                f"{type_id}: backed up {len(written)} database(s), "
                f"{bytes_written} bytes in {result.elapsed_seconds:.1f}s"
            )

        except BackupError as e:
            e.backend = e.backend or type_id
            self._log(f"{type_id}: {e.kind}: {e}", logging.ERROR)
            self._discard_staging(destination)
            result = self._failed(type_id, started_at, e, estimated=estimated)

        except OSError as e:
            error = StagingIOError(str(e), backend=type_id)
            self._log(f"{type_id}: {error.kind}: {error}", logging.ERROR)
            self._discard_staging(destination)
            result = self._failed(type_id, started_at, error, estimated=estimated)

        except Exception as e:
            self.logger.exception(f"Unexpected error backing up {type_id}")
            self._log(f"{type_id}: unexpected error: {e}", logging.ERROR)
            self._discard_staging(destination)
            result = BackupResult(
                backend=type_id,
                status=BackupStatus.FAILED,
                started_at=started_at,
                completed_at=datetime.now(),
                reason=str(e) or type(e).__name__,
                error_kind=type(e).__name__,
                estimated_bytes=estimated
            )

        finally:
            self._set_state(type_id, BackendState.DONE)

        return result

    def _estimate(self, type_id: str, connection: Connection) -> int:
        """Log descriptors and the size estimate. Never blocks progress."""
        estimated = 0
        try:
            descriptors = connection.get_database_info()
            self._log(f"{type_id}: found {len(descriptors)} database(s) for backup")
            for descriptor in descriptors:
                self._log(f"{type_id}:   - {descriptor}")
            estimated = connection.estimate_from_descriptors(descriptors)
        except BackupError as e:
            self._log(f"{type_id}: database info unavailable: {e}", logging.WARNING)

        self._log(f"{type_id}: estimated backup size {estimated} bytes")
        return estimated

    def _package(self, succeeded: List[str], results: List[BackupResult]):
        self._log(f"Creating archive from {', '.join(succeeded)}")
        try:
            archive = create_archive(
                self.staging_root,
                self.output_dir,
                backends=succeeded,
                prefix=self.archive_prefix,
                started_at=self.started_at
            )
        except PackagingError as e:
            self._log(f"Packaging failed: {e}", logging.ERROR)
            raise RunFailedError("Packaging failed; no archive was produced", results, cause=e)

        self._log(
            f"Archive created: {archive.path} ({archive.file_count} files, "
            f"{archive.uncompressed_bytes} bytes uncompressed, "
            f"{archive.compressed_bytes / 1024 / 1024:.2f} MB)"
        )
        return archive

    def _publish(self, report: RunReport):
        if self.storage is None:
            return
        self._log("Uploading archive to remote storage")
        try:
            report.remote_key = self.storage.upload(report.archive.path, self.storage_prefix)
            self._log(f"Uploaded: {report.remote_key}")
        except StorageError as e:
            report.upload_error = str(e)
            self._log(f"Upload failed: {e}", logging.ERROR)

    # ---- helpers -------------------------------------------------------

    def _failed(self, type_id: str, started_at: datetime, error: BackupError,
                reason: Optional[str] = None, estimated: int = 0) -> BackupResult:
        return BackupResult(
            backend=type_id,
            status=BackupStatus.FAILED,
            started_at=started_at,
            completed_at=datetime.now(),
            reason=reason or (f"timeout: {error}" if isinstance(error, BackupTimeoutError) else str(error)),
            error_kind=error.kind,
            estimated_bytes=estimated
        )

    def _set_state(self, type_id: str, state: BackendState):
        with self._lock:
            self.states[type_id] = state
        self.logger.debug(f"{type_id} -> {state.value}")

    def _discard_staging(self, destination: str):
        if not os.path.exists(destination):
            return
        try:
            shutil.rmtree(destination)
        except OSError as e:
            self._log(f"Warning: failed to remove {destination}: {e}", logging.WARNING)

    def _cleanup(self):
        """Remove the staging tree unless asked to keep it."""
        if not self.staging_root or not os.path.exists(self.staging_root):
            return
        if self.keep_staging:
            self._log(f"Keeping staging directory {self.staging_root}")
            return
        try:
            shutil.rmtree(self.staging_root)
            self._log("Cleaned up staging directory")
        except OSError as e:
            self._log(f"Warning: Failed to cleanup staging directory: {e}", logging.WARNING)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Record a run log line and emit it through the context logger.

        Args:
            message: Log message
            level: logging level
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        with self._lock:
            self.logs.append(f"[{timestamp}] {message}")
        self.logger.log(level, message)


def _directory_size(path: str) -> int:
    total = 0
    for file_path in Path(path).rglob('*'):
        if file_path.is_file():
            total += file_path.stat().st_size
    return total


def run_backup(run_config, context: Optional[BackupContext] = None, storage=None) -> RunReport:
    """
    Execute a backup run from a parsed configuration.

    Args:
        run_config: kroncli.config.RunConfig
        context: Run context (default: real process runner, 'kroncli.backup' logger)
        storage: Uploader override; built from run_config.storage when None

    Returns:
        RunReport

    Raises:
        RunFailedError: If no archive was produced
    """
    context = context or BackupContext()
    context.timeout = run_config.timeout

    if storage is None and run_config.storage.uses_s3:
        storage = S3Storage.from_settings(run_config.storage)

    orchestrator = BackupOrchestrator(
        run_config.backends,
        output_dir=run_config.output_dir,
        archive_prefix=run_config.archive_prefix,
        staging_dir=run_config.staging_dir,
        context=context,
        parallel=run_config.parallel,
        max_workers=run_config.max_workers,
        keep_staging=run_config.keep_staging,
        storage=storage,
        storage_prefix=run_config.storage.prefix
    )
    return orchestrator.execute()
