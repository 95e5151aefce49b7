"""
Crash-safe file replacement and the per-deployment writer lock
"""
import fcntl
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator, Optional
from clusterward.core.errors import ConcurrentReconfigurationError


logger = logging.getLogger("DeploymentFiles")

LOCK_FILENAME = ".clusterward.lock"


@contextmanager
def atomic_write(path: Path, mode: str = 'wb') -> Iterator[IO]:
    """
    Open a temporary file next to ``path`` and move it into place on exit.

    The temporary file is fsynced and renamed over ``path`` only when the
    block finishes normally, then the directory is fsynced so the rename
    itself survives a crash. On any exception the temporary file is
    removed, so readers see either the old file or the complete new one.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix='.tmp')
    try:
        with os.fdopen(fd, mode) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_name, 0o644)
        os.replace(temp_name, path)
        fsync_directory(path.parent)
    except BaseException:
        try:
            os.unlink(temp_name)
        except FileNotFoundError:
            pass
        raise


def fsync_directory(directory: Path):
    """Flush directory entries (creates, renames) to disk"""
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def write_atomic(path: Path, data: bytes):
    """Replace ``path`` with ``data`` in one rename"""
    with atomic_write(path) as f:
        f.write(data)


class DeploymentLock:
    """
    Exclusive, non-blocking lock scoped to a deployment directory.

    A second holder fails immediately with ConcurrentReconfigurationError
    instead of waiting. The lock is an advisory flock, released when the
    file is closed or the process exits.
    """

    def __init__(self, deployment_dir: Path):
        self.path = Path(deployment_dir) / LOCK_FILENAME
        self._file: Optional[IO] = None

    @property
    def held(self) -> bool:
        return self._file is not None

    def acquire(self):
        if self._file is not None:
            raise ConcurrentReconfigurationError(f"Lock {self.path} is already held by this handle")

        self.path.parent.mkdir(parents=True, exist_ok=True)
        f = open(self.path, 'a+')
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            f.close()
            raise ConcurrentReconfigurationError(
                f"Another reconfiguration is running against {self.path.parent}"
            )

        f.seek(0)
        f.truncate()
        f.write(f"{os.getpid()}\n")
        f.flush()
        self._file = f
        logger.debug(f"Acquired deployment lock {self.path}")

    def release(self):
        if self._file is None:
            return
        try:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
        finally:
            self._file.close()
            self._file = None
        logger.debug(f"Released deployment lock {self.path}")

    def __enter__(self) -> "DeploymentLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
