"""Shared fixtures for sharebench tests: a fake share mount and fake clocks."""

import tempfile
from pathlib import Path
from types import SimpleNamespace

import psutil

from sharebench.config import RunConfiguration


class ShareSandbox:
    """Temp directory laid out as <mount>/<host>/<share> plus local work/shared dirs."""

    def __init__(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.mount = self.root / "mnt"
        self.work = self.root / "work"
        self.shared = self.root / "shared"
        self.mount.mkdir()

    def add_share(self, host: str, share: str, pool_files=None) -> Path:
        share_dir = self.mount / host / share
        share_dir.mkdir(parents=True)
        if pool_files:
            pool = share_dir / "SpeedTest" / "ReadPool"
            pool.mkdir(parents=True)
            for name, size in pool_files.items():
                (pool / name).write_bytes(b"\x5a" * size)
        return share_dir

    def config(self, **overrides) -> RunConfiguration:
        values = dict(
            targets=(),
            passes=1,
            payload_size_bytes=64 * 1024,
            drain_enabled=False,
            inter_pass_delay_seconds=0.0,
            work_dir=self.work,
            shared_dir=self.shared,
            share_mount_root=self.mount,
            source_host="src01",
        )
        values.update(overrides)
        return RunConfiguration(**values)

    def cleanup(self):
        self._tmp.cleanup()


class FakeClock:
    """Monotonic clock whose sleep() advances time instantly."""

    def __init__(self, start: float = 100.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class SteppingTimer:
    """perf_counter stand-in returning pre-set values in order."""

    def __init__(self, *values: float):
        self._values = list(values)

    def __call__(self) -> float:
        return self._values.pop(0)


def conn(ip: str, port: int = 445, status: str = psutil.CONN_ESTABLISHED):
    return SimpleNamespace(status=status, raddr=SimpleNamespace(ip=ip, port=port))
