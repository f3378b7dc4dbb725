"""
Write-then-rename helpers.

Nothing is ever written directly under a final name: output goes to a hidden
temporary file in the same directory and is moved into place with os.replace
(or os.link when an existing file must not be replaced) once complete.
A killed process leaves only ``.<name>.*.tmp`` files behind.
"""

import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

TEMP_SUFFIX = '.tmp'


def temp_path_for(final_path: str) -> str:
    """
    Reserve a temporary file next to ``final_path``.

    Returns:
        Path of an empty file created with mode 0600
    """
    directory, name = os.path.split(os.path.abspath(final_path))
    fd, temp_path = tempfile.mkstemp(prefix=f'.{name}.', suffix=TEMP_SUFFIX, dir=directory)
    os.close(fd)
    return temp_path


def is_temp_artifact(filename: str) -> bool:
    return filename.startswith('.') and filename.endswith(TEMP_SUFFIX)


def fsync_file(path: str):
    with open(path, 'rb') as f:
        os.fsync(f.fileno())


@contextmanager
def atomic_output(final_path: str, overwrite: bool = True) -> Iterator[str]:
    """
    Yield a temporary path that becomes ``final_path`` when the block exits cleanly.

    On any exception the temporary file is removed and the exception propagates.

    Args:
        final_path: Destination path
        overwrite: If False, raise FileExistsError instead of replacing an existing file.
            The check and the publish are one link() call, so a concurrent writer
            of the same name cannot be clobbered.
    """
    Path(final_path).parent.mkdir(parents=True, exist_ok=True)
    temp_path = temp_path_for(final_path)
    try:
        yield temp_path
        fsync_file(temp_path)
        if overwrite:
            os.replace(temp_path, final_path)
        else:
            os.link(temp_path, final_path)
            os.remove(temp_path)
    except BaseException:
        _remove_quietly(temp_path)
        raise


def _remove_quietly(path: str):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
