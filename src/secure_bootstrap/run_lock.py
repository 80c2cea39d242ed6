"""
Host-wide run lock.

Only one pipeline may converge a host at a time. The lock is an advisory
flock on a file in the state directory, released when the process exits
even if it dies mid-run.
"""

import fcntl
import os
from pathlib import Path
from typing import Optional

from secure_bootstrap.exceptions import PreconditionError


class RunLock:
    """Non-blocking exclusive lock, usable as a context manager."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fd: Optional[int] = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """
        Take the lock.

        Raises:
            PreconditionError: If another run holds it
        """
        self._path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        fd = os.open(self._path, os.O_RDWR | os.O_CREAT, 0o600)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise PreconditionError(
                code="lock_busy",
                message=f"Another run holds {self._path}",
                details={"path": str(self._path)},
            )
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode("ascii"))
        self._fd = fd

    def release(self) -> None:
        if self._fd is None:
            return
        fcntl.flock(self._fd, fcntl.LOCK_UN)
        os.close(self._fd)
        self._fd = None

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
