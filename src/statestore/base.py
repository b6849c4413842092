"""Shared state store primitives.

Files are addressed by paths relative to the store root. Writes go through a
temporary file in the destination directory so readers never observe a
partially written file.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from common import CloudupError

logger = logging.getLogger(__name__)


class StateStoreError(CloudupError):
    """I/O or persistence failure for CA or secret material."""

    def __init__(self, message: str):
        super().__init__('E500', message)


def _write_temp(path: Path, data: bytes, mode: int) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f'.{path.name}-')
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
        os.chmod(tmp, mode)
    except OSError:
        Path(tmp).unlink(missing_ok=True)
        raise
    return Path(tmp)


def write_atomic(path: Path, data: bytes, mode: int = 0o644) -> None:
    """Write data to path, replacing any existing file.

    Raises:
        StateStoreError: If the write fails
    """
    try:
        tmp = _write_temp(path, data, mode)
        os.replace(tmp, path)
    except OSError as e:
        raise StateStoreError(f"error writing {path}: {e}") from e


def write_exclusive(path: Path, data: bytes, mode: int = 0o644) -> bool:
    """Write data to path only if path does not exist yet.

    The file appears fully written or not at all. When another writer won the
    race the existing file is left untouched.

    Returns:
        True if this call created the file, False if it already existed

    Raises:
        StateStoreError: If the write fails for any other reason
    """
    try:
        tmp = _write_temp(path, data, mode)
    except OSError as e:
        raise StateStoreError(f"error writing {path}: {e}") from e
    try:
        os.link(tmp, path)
        return True
    except FileExistsError:
        return False
    except OSError as e:
        raise StateStoreError(f"error writing {path}: {e}") from e
    finally:
        tmp.unlink(missing_ok=True)


def read_optional(path: Path) -> Optional[bytes]:
    """Read a file, returning None if it does not exist.

    Raises:
        StateStoreError: If the file exists but cannot be read
    """
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise StateStoreError(f"error reading {path}: {e}") from e


def validate_id(kind: str, item_id: str) -> None:
    """Reject ids that are empty or would escape their directory."""
    if not item_id or item_id in ('.', '..') or '/' in item_id or '\\' in item_id:
        raise StateStoreError(f"invalid {kind} id: {item_id!r}")
