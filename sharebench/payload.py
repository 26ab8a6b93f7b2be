"""
Random payload provisioning.

Writes a file of exactly ``size_bytes`` pseudo-random bytes so that neither
SMB compression nor dedup on the target can shortcut the transfer. The
generator does not need cryptographic strength; ``random.Random.randbytes``
is several times faster than os.urandom for large payloads.
"""

import logging
import os
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sharebench.exceptions import ProvisionError

logger = logging.getLogger("sharebench.payload")

CHUNK_SIZE = 4 * 1024 * 1024


@dataclass(frozen=True)
class PayloadArtifact:
    path: Path
    timestamp: datetime
    size_bytes: int


class PayloadProvisioner:
    def __init__(self, rng: Optional[random.Random] = None, chunk_size: int = CHUNK_SIZE):
        self._rng = rng or random.Random()
        self._chunk_size = chunk_size

    def generate(self, path: Path, size_bytes: int, timestamp_jitter_hours: float = 0.0) -> PayloadArtifact:
        """Write ``size_bytes`` random bytes to ``path`` (overwriting) and stamp its times."""
        if size_bytes <= 0:
            raise ValueError(f"size_bytes must be > 0, got {size_bytes}")
        path = Path(path)
        remaining = size_bytes
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as fh:
                while remaining > 0:
                    n = min(self._chunk_size, remaining)
                    fh.write(self._rng.randbytes(n))
                    remaining -= n
                fh.flush()
                os.fsync(fh.fileno())
            stamp = time.time()
            if timestamp_jitter_hours > 0:
                stamp -= self._rng.uniform(0, timestamp_jitter_hours) * 3600.0
            os.utime(path, (stamp, stamp))
            written = path.stat().st_size
        except OSError as exc:
            raise ProvisionError(f"payload write to {path} failed: {exc}") from exc

        if written != size_bytes:
            raise ProvisionError(f"payload {path} is {written} bytes, expected {size_bytes}")

        artifact = PayloadArtifact(
            path=path,
            timestamp=datetime.fromtimestamp(stamp, tz=timezone.utc),
            size_bytes=written,
        )
        logger.debug(f"Provisioned {written} bytes at {path}")
        return artifact
