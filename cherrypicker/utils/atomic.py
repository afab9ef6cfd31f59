"""
Temp-file-then-rename primitive.

A final-named artifact must always be complete: callers write into
``<final>.tmp`` and the guard promotes it with a single ``os.replace`` only
when the body finished without raising. On every other exit path the temp
file is removed.
"""

import os
import logging
from contextlib import contextmanager
from typing import Iterator

from cherrypicker.errors import FileSystemError


logger = logging.getLogger(__name__)

TEMP_SUFFIX = '.tmp'


def temp_path_for(final_path: str) -> str:
    """Return the temp artifact path used while ``final_path`` is being written."""
    return f"{final_path}{TEMP_SUFFIX}"


def discard_artifact(path: str) -> bool:
    """
    Remove a partially written artifact, best-effort.

    Removal failure is logged as a warning and never raised.

    Returns:
        True if a file was removed, False otherwise
    """
    if not os.path.exists(path):
        return False

    try:
        os.remove(path)
        logger.info(f"Cleaned up incomplete file: {path}")
        return True
    except OSError as e:
        logger.warning(f"Failed to cleanup incomplete file {path}: {e}")
        return False


def promote(temp_path: str, final_path: str):
    """
    Atomically rename ``temp_path`` to ``final_path``.

    Raises:
        FileSystemError: If the rename fails (the temp file is discarded)
    """
    try:
        os.replace(temp_path, final_path)
    except OSError as e:
        discard_artifact(temp_path)
        raise FileSystemError(f"Failed to promote {temp_path} to {final_path}: {e}")


@contextmanager
def atomic_artifact(final_path: str) -> Iterator[str]:
    """
    Yield a temp path that is promoted to ``final_path`` on clean exit.

    Example:
        with atomic_artifact('/backups/db.gz') as temp_path:
            write_archive(temp_path)
        # /backups/db.gz now exists, /backups/db.gz.tmp does not

    Raises:
        FileSystemError: If promotion fails
    """
    temp_path = temp_path_for(final_path)
    try:
        yield temp_path
    except BaseException:
        discard_artifact(temp_path)
        raise

    if not os.path.exists(temp_path):
        raise FileSystemError(f"Expected output file was not written: {temp_path}")

    promote(temp_path, final_path)
