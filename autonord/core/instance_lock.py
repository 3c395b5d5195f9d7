# ==============================================================================
# FILE: core/instance_lock.py
# PURPOSE: Makes sure only one AutoNord drives the VPN client at a time.
# ==============================================================================
import fcntl
import logging
import os
import time
from typing import Optional

import psutil

logger = logging.getLogger(__name__)


class AlreadyRunning(Exception):
    def __init__(self, pid: Optional[int]) -> None:
        self.pid = pid
        who = f"PID {pid}" if pid else "another process"
        super().__init__(f"AutoNord is already running ({who}).")


class InstanceLock:
    """Exclusive flock on a lock file that also records the holder's PID."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def _read_pid(self, fd: int) -> Optional[int]:
        try:
            os.lseek(fd, 0, os.SEEK_SET)
            data = os.read(fd, 32).decode(errors="ignore").strip()
            return int(data) if data else None
        except (OSError, ValueError):
            return None

    def try_acquire(self) -> Optional[int]:
        """Takes the lock. Returns None on success, else the PID holding it."""
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            holder = self._read_pid(fd)
            os.close(fd)
            return holder or 0
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        return None

    def acquire(self, replace: bool = False, wait: float = 5.0) -> None:
        holder = self.try_acquire()
        if holder is None:
            return
        if not replace or not holder:
            raise AlreadyRunning(holder)

        logger.warning("Terminating running instance with PID %s", holder)
        terminate_instance(holder, wait)
        deadline = time.monotonic() + wait
        while True:
            holder = self.try_acquire()
            if holder is None:
                return
            if time.monotonic() >= deadline:
                raise AlreadyRunning(holder)
            time.sleep(0.1)

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            os.ftruncate(self._fd, 0)
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    def __enter__(self) -> "InstanceLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()


def terminate_instance(pid: int, wait: float = 5.0) -> None:
    """Sends SIGTERM to the holder and escalates to SIGKILL if it hangs."""
    if pid == os.getpid():
        return
    try:
        p = psutil.Process(pid)
        p.terminate()
        try:
            p.wait(timeout=wait)
        except psutil.TimeoutExpired:
            logger.warning("PID %s ignored SIGTERM, killing it", pid)
            p.kill()
    except psutil.NoSuchProcess:
        pass
    except psutil.AccessDenied as e:
        raise AlreadyRunning(pid) from e
