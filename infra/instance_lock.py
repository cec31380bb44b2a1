"""
Single Instance Lock

PID file guarding the ledger file: two bot processes on one ledger would
double-spend capital and overwrite each other's state. Operator tools that
edit the ledger offline check the same file before touching it.
"""

import atexit
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_LOCK_NAME = "momentum-bot"


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by another user
        return True
    except OSError:
        return False
    return True


class SingleInstanceLock:
    """
    File-based single instance lock.

    Usage:
        lock = SingleInstanceLock("momentum-bot", lock_dir="data")
        if not lock.acquire():
            sys.exit(1)
        ...
        lock.release()  # also runs at interpreter exit

    Signal handling belongs to the process owner (TradingBot), which releases
    the lock during its shutdown.
    """

    def __init__(self, name: str = DEFAULT_LOCK_NAME, lock_dir: str = "data"):
        self.name = name
        self.lock_dir = Path(lock_dir)
        self.lock_file = self.lock_dir / f"{name}.pid"
        self.acquired = False
        atexit.register(self.release)

    def holder_pid(self) -> Optional[int]:
        """PID of a live process holding the lock, if any."""
        if not self.lock_file.exists():
            return None
        try:
            pid = int(self.lock_file.read_text().strip())
        except (OSError, ValueError):
            return None
        if pid == os.getpid() and self.acquired:
            return pid
        return pid if _pid_alive(pid) else None

    def is_held(self) -> bool:
        return self.holder_pid() is not None

    def acquire(self) -> bool:
        """
        Returns:
            True if the lock was acquired, False if another live process holds it
        """
        if self.acquired:
            return True

        if self.lock_file.exists():
            pid = self.holder_pid()
            if pid is not None:
                logger.error(f"Another instance is running (PID={pid}); lock file: {self.lock_file}")
                return False
            logger.warning(f"Removing stale lock file {self.lock_file}")
            try:
                self.lock_file.unlink()
            except FileNotFoundError:
                pass

        try:
            self.lock_dir.mkdir(parents=True, exist_ok=True)
            self.lock_file.write_text(str(os.getpid()))
        except OSError as e:
            logger.error(f"Failed to create lock file {self.lock_file}: {e}")
            return False
        self.acquired = True
        logger.info(f"Lock acquired (PID={os.getpid()}, file={self.lock_file})")
        return True

    def release(self) -> None:
        if not self.acquired:
            return
        try:
            self.lock_file.unlink()
            logger.info(f"Lock released (file={self.lock_file})")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to release lock: {e}")
        self.acquired = False

    def __enter__(self):
        if not self.acquire():
            raise RuntimeError(f"Failed to acquire lock for {self.name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
