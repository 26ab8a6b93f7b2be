"""
Host-scoped run lock.

One marker file per source host under the shared run directory
(``<shared_dir>/<host>.lock``). The marker is created with O_CREAT|O_EXCL so
two orchestrators can never both observe "unlocked"; its body records who
holds it. Release only ever removes a marker this process created.

Usage:
    with run_lock(marker_path(cfg.shared_dir, cfg.source_host), owner, policy="abort"):
        orchestrator.run()
"""

import json
import logging
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, Optional

from sharebench.exceptions import LockContention

logger = logging.getLogger("sharebench.run_lock")


def marker_path(shared_dir: Path, host: str) -> Path:
    return Path(shared_dir) / f"{host}.lock"


@dataclass
class LockHandle:
    location: Path
    owner: str
    token: str
    released: bool = False


class RunLock:
    def __init__(
        self,
        location: Path,
        owner_id: str,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.location = Path(location)
        self.owner_id = owner_id
        self._clock = clock
        self._sleep = sleep

    def _try_create(self, token: str) -> bool:
        self.location.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(self.location), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            return False
        body = {
            "owner": self.owner_id,
            "pid": os.getpid(),
            "token": token,
            "created_utc": datetime.now(timezone.utc).isoformat(),
        }
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(body, fh)
        except OSError:
            # Half-written marker must not outlive a failed acquire.
            self.location.unlink(missing_ok=True)
            raise
        return True

    def read_owner(self) -> str:
        """Owner recorded in the current marker, or '' if unreadable/absent."""
        try:
            data = json.loads(self.location.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return ""
        except (OSError, ValueError):
            return "unknown"
        if isinstance(data, dict):
            return str(data.get("owner", "unknown"))
        return "unknown"

    def _read_token(self) -> Optional[str]:
        try:
            data = json.loads(self.location.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        return data.get("token") if isinstance(data, dict) else None

    def acquire(self, wait_seconds: float = 0.0, poll_interval: float = 1.0) -> LockHandle:
        """
        Create the marker, polling up to ``wait_seconds`` for a held marker to clear.

        Raises:
            LockContention: marker still present when the wait ceiling is reached.
        """
        token = f"{os.getpid()}-{time.time_ns()}"
        start = self._clock()
        while True:
            if self._try_create(token):
                logger.info(f"Acquired run lock {self.location}", extra={"owner": self.owner_id})
                return LockHandle(location=self.location, owner=self.owner_id, token=token)
            elapsed = self._clock() - start
            if elapsed >= wait_seconds:
                raise LockContention(self.location, self.read_owner())
            self._sleep(min(poll_interval, wait_seconds - elapsed))

    def release(self, handle: Optional[LockHandle]) -> None:
        """Remove the marker if this handle created it. Safe to call repeatedly or with None."""
        if handle is None or handle.released:
            return
        handle.released = True
        if self._read_token() != handle.token:
            logger.warning(f"Run lock {handle.location} no longer ours; leaving it in place")
            return
        try:
            handle.location.unlink()
        except FileNotFoundError:
            return
        logger.info(f"Released run lock {handle.location}")


@contextmanager
def run_lock(
    location: Path,
    owner_id: str,
    policy: str = "abort",
    wait_seconds: float = 0.0,
    poll_interval: float = 1.0,
) -> Iterator[Optional[LockHandle]]:
    """
    Scoped run lock. Yields the handle, or None when the lock is held elsewhere
    and ``policy == "warn"``. With ``policy == "abort"`` contention re-raises
    LockContention before the body runs.
    """
    lock = RunLock(location, owner_id)
    handle: Optional[LockHandle] = None
    try:
        try:
            handle = lock.acquire(wait_seconds=wait_seconds, poll_interval=poll_interval)
        except LockContention as exc:
            if policy != "warn":
                raise
            logger.warning(f"{exc}; continuing without lock (lock_policy=warn)")
        yield handle
    finally:
        lock.release(handle)
