"""
Archive packaging for staged backup output.

Writes one gzip-compressed tar per run:
    <prefix>-<YYYYmmddTHHMMSSffffff>.tar.gz

The archive is streamed to a hidden temporary file in the output directory and
renamed to its final name only after it has been closed and synced, so the
final name never refers to a partial archive.
"""

import os
import tarfile
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from kroncli.models import ArchiveInfo
from kroncli.utils.atomic import atomic_output, is_temp_artifact
from .errors import PackagingError

ARCHIVE_EXTENSION = 'tar.gz'


def create_archive(
    staging_root: str,
    output_dir: str,
    backends: Optional[Iterable[str]] = None,
    prefix: str = 'backup',
    started_at: Optional[datetime] = None
) -> ArchiveInfo:
    """
    Compress the staging tree into a single archive.

    Args:
        staging_root: Directory holding one subdirectory per backend
        output_dir: Directory the archive is published into
        backends: Backend subdirectories to include (default: all of them)
        prefix: Archive name prefix
        started_at: Run start time used in the archive name (default: now)

    Returns:
        ArchiveInfo for the published archive

    Raises:
        PackagingError: If there is nothing to archive or writing fails
    """
    root = Path(staging_root)
    if not root.is_dir():
        raise PackagingError(f"Staging directory does not exist: {staging_root}")

    members = _collect_members(root, backends)
    if not any(path.is_file() for path, _ in members):
        raise PackagingError("No staged files to archive")

    try:
        os.makedirs(output_dir, exist_ok=True)
    except OSError as e:
        raise PackagingError(f"Failed to create output directory {output_dir}: {e}")

    filename = generate_archive_filename(prefix, started_at)
    final_path = _unused_path(Path(output_dir), filename)

    try:
        with atomic_output(str(final_path), overwrite=False) as temp_path:
            uncompressed_bytes, file_count = _write_tar(members, temp_path)
    except PackagingError:
        raise
    except Exception as e:
        raise PackagingError(f"Failed to create archive: {e}")

    return ArchiveInfo(
        path=str(final_path),
        uncompressed_bytes=uncompressed_bytes,
        file_count=file_count,
        compressed_bytes=get_archive_size(str(final_path))
    )


def _collect_members(root: Path, backends: Optional[Iterable[str]]) -> List[Tuple[Path, str]]:
    """
    List (path, arcname) pairs in a stable order.

    Directories come before their contents; temp artifacts are skipped.
    """
    if backends is None:
        names = sorted(p.name for p in root.iterdir() if p.is_dir())
    else:
        names = list(backends)

    members = []
    for name in names:
        backend_dir = root / name
        if not backend_dir.is_dir():
            raise PackagingError(f"Missing staging output for {name}", backend=name)

        members.append((backend_dir, name))
        for dirpath, dirnames, filenames in os.walk(backend_dir):
            dirnames.sort()
            current = Path(dirpath)
            for dirname in dirnames:
                path = current / dirname
                members.append((path, path.relative_to(root).as_posix()))
            for filename in sorted(filenames):
                if is_temp_artifact(filename):
                    continue
                path = current / filename
                members.append((path, path.relative_to(root).as_posix()))
    return members


def _write_tar(members: List[Tuple[Path, str]], archive_path: str) -> Tuple[int, int]:
    """Stream members into a tar.gz. Returns (uncompressed bytes, file count)."""
    total_bytes = 0
    file_count = 0

    with open(archive_path, 'wb') as out:
        with tarfile.open(fileobj=out, mode='w:gz') as tar:
            for path, arcname in members:
                # gettarinfo keeps mtime and mode
                info = tar.gettarinfo(str(path), arcname=arcname)
                if info.isfile():
                    with open(path, 'rb') as f:
                        tar.addfile(info, f)
                    total_bytes += info.size
                    file_count += 1
                else:
                    tar.addfile(info)
        out.flush()
        os.fsync(out.fileno())

    return total_bytes, file_count


def _unused_path(output_dir: Path, filename: str) -> Path:
    """Never reuse the name of an existing archive."""
    candidate = output_dir / filename
    stem = strip_archive_extension(filename)
    counter = 1
    while candidate.exists():
        candidate = output_dir / f"{stem}-{counter}.{ARCHIVE_EXTENSION}"
        counter += 1
    return candidate


def generate_archive_filename(prefix: str, started_at: Optional[datetime] = None) -> str:
    """
    Generate a standardized archive filename.

    Format: {prefix}-{YYYYmmddTHHMMSSffffff}.tar.gz

    Args:
        prefix: Archive name prefix
        started_at: Run start time

    Returns:
        Filename (without path)
    """
    timestamp = (started_at or datetime.now()).strftime('%Y%m%dT%H%M%S%f')

    # Sanitize prefix (replace spaces and special chars with underscores)
    safe_prefix = "".join(
        c if c.isalnum() or c in ('-', '_') else '_'
        for c in prefix
    ) or 'backup'

    return f"{safe_prefix}-{timestamp}.{ARCHIVE_EXTENSION}"


def strip_archive_extension(filename: str) -> str:
    if filename.endswith(f'.{ARCHIVE_EXTENSION}'):
        return filename[:-len(ARCHIVE_EXTENSION) - 1]
    return os.path.splitext(filename)[0]


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        PackagingError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise PackagingError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise PackagingError(f"Failed to get archive size: {e}")


def verify_archive(archive_path: str) -> Tuple[int, int]:
    """
    Read an archive back end to end.

    Returns:
        (uncompressed bytes, file count), comparable with ArchiveInfo

    Raises:
        PackagingError: If the archive is unreadable or truncated
    """
    total_bytes = 0
    file_count = 0
    try:
        with tarfile.open(archive_path, 'r:gz') as tar:
            for member in tar:
                if not member.isfile():
                    continue
                extracted = tar.extractfile(member)
                while True:
                    chunk = extracted.read(1024 * 1024)
                    if not chunk:
                        break
                    total_bytes += len(chunk)
                file_count += 1
    except (tarfile.TarError, OSError, EOFError) as e:
        raise PackagingError(f"Archive verification failed for {archive_path}: {e}")
    return total_bytes, file_count
