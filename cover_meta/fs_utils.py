from __future__ import annotations

import logging
import os
import stat
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .errors import FileIOError

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"

# Read once at import; os.umask cannot be queried without setting it.
_UMASK = os.umask(0)
os.umask(_UMASK)
NEW_FILE_MODE = 0o666 & ~_UMASK


def _permission_bits(path: Path) -> Optional[int]:
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        return None


@contextmanager
def staged_path(target: Path) -> Iterator[Path]:
    """Yield a temporary sibling of ``target`` that replaces it on clean exit.

    The temporary file lives in the same directory so the final
    :func:`os.replace` is a same-filesystem rename. On any exception it is
    removed and ``target`` is left as it was.
    """
    fd, name = tempfile.mkstemp(
        prefix=f".{target.name}.", suffix=TEMP_SUFFIX, dir=target.parent
    )
    os.close(fd)
    temp = Path(name)
    try:
        yield temp
        mode = _permission_bits(target)
        os.chmod(temp, NEW_FILE_MODE if mode is None else mode)
        os.replace(temp, target)
    except BaseException:
        _discard(temp)
        raise


def atomic_write(target: Path, data: bytes) -> None:
    """Replace ``target`` with ``data`` without exposing a partial file."""
    try:
        with staged_path(target) as temp:
            with temp.open("wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
    except OSError as exc:
        raise FileIOError(f"cannot write {target}: {exc}") from exc
    logger.debug("Committed %d bytes to %s", len(data), target)


def _discard(temp: Path) -> None:
    try:
        temp.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove temporary file %s: %s", temp, exc)
