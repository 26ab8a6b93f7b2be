"""
Cold/warm throughput probe.

One probe = one (target, mode) measurement:

    INIT -> COLD_PROVISION | WARM_LOCATE -> WRITE_COPY -> DRAIN_WAIT_1
         -> READ_COPY -> DRAIN_WAIT_2 -> FINALIZE -> DONE | FAILED

Cold probes generate a fresh random payload at the source and pick the first
file (by name) from the target's ReadPool; both are recorded so the warm probe
that follows copies the very same files again. The warm probe never
regenerates anything: missing leftovers fail it with MissingWarmArtifact.
Warm probes consume what they reuse (source payload and ReadPool file).

Every call to ThroughputProbe.run() returns exactly one Sample; probe-level
errors end up in Sample.status, they are never raised to the caller.
"""

import logging
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from sharebench.config import RunConfiguration
from sharebench.drain import ConnectionDrainBarrier, DrainResult
from sharebench.exceptions import (
    CopyError,
    InvalidPathFormat,
    MissingWarmArtifact,
    ProbeError,
    ProvisionError,
    TargetUnreachable,
)
from sharebench.payload import PayloadProvisioner
from sharebench.unc import UncPath, parse_unc
from sharebench.warm_state import WarmEntry, WarmStateStore

logger = logging.getLogger("sharebench.probe")

STATUS_OK = "OK"
MEBIBIT = 1_048_576


class RunMode(str, Enum):
    COLD = "cold"
    WARM = "warm"


class ProbeState(Enum):
    INIT = "init"
    COLD_PROVISION = "cold_provision"
    WARM_LOCATE = "warm_locate"
    WRITE_COPY = "write_copy"
    DRAIN_WAIT_1 = "drain_wait_1"
    READ_COPY = "read_copy"
    DRAIN_WAIT_2 = "drain_wait_2"
    FINALIZE = "finalize"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class Sample:
    """One measurement outcome. Produced only by ThroughputProbe."""
    server: str
    timestamp: datetime
    status: str
    write_seconds: float
    write_mbps: float
    read_seconds: float
    read_mbps: float
    source_host: str
    payload_size_bytes: int
    mode: RunMode
    pass_number: int = 1
    error_kind: str = ""

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    @property
    def cold(self) -> bool:
        return self.mode is RunMode.COLD


def compute_mbps(size_bytes: int, seconds: float) -> float:
    """Megabits per second with a 2^20 divisor, rounded to 2dp. Non-positive durations give 0.0."""
    if seconds <= 0:
        return 0.0
    return round((size_bytes * 8 / seconds) / MEBIBIT, 2)


@dataclass
class _ProbeContext:
    target: str
    mode: RunMode
    pass_number: int
    started: datetime
    state: ProbeState = ProbeState.INIT
    unc: Optional[UncPath] = None
    speedtest_dir: Optional[Path] = None
    payload_path: Optional[Path] = None
    payload_size: int = 0
    read_file: str = ""
    read_bytes: int = 0
    write_seconds: float = 0.0
    read_seconds: float = 0.0
    drains: list = field(default_factory=list)

    @property
    def server(self) -> str:
        return self.unc.server if self.unc else self.target


class ThroughputProbe:
    def __init__(
        self,
        config: RunConfiguration,
        provisioner: Optional[PayloadProvisioner] = None,
        drain: Optional[ConnectionDrainBarrier] = None,
        warm_state: Optional[WarmStateStore] = None,
        timer: Callable[[], float] = time.perf_counter,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc).astimezone(),
    ):
        self.config = config
        self.provisioner = provisioner or PayloadProvisioner()
        self.drain = drain or ConnectionDrainBarrier(poll_interval=config.drain_poll_interval_seconds)
        self.warm_state = warm_state or WarmStateStore(config.work_dir)
        self._timer = timer
        self._now = now

    # -- public -----------------------------------------------------------------

    def run(self, target: str, mode: RunMode, pass_number: int = 1) -> Sample:
        ctx = _ProbeContext(target=target, mode=RunMode(mode), pass_number=pass_number, started=self._now())
        try:
            self._init(ctx)
            if ctx.mode is RunMode.COLD:
                self._cold_provision(ctx)
            else:
                self._warm_locate(ctx)
            self._write_copy(ctx)
            self._drain_wait(ctx, ProbeState.DRAIN_WAIT_1)
            self._read_copy(ctx)
            self._drain_wait(ctx, ProbeState.DRAIN_WAIT_2)
            return self._finalize(ctx)
        except (ProbeError, InvalidPathFormat) as exc:
            return self._fail(ctx, exc)

    # -- states -----------------------------------------------------------------

    def _enter(self, ctx: _ProbeContext, state: ProbeState) -> None:
        ctx.state = state
        logger.debug(
            f"{ctx.target} [{ctx.mode.value}] -> {state.value}",
            extra={"target": ctx.target, "mode": ctx.mode.value, "state": state.value},
        )

    def _init(self, ctx: _ProbeContext) -> None:
        self._enter(ctx, ProbeState.INIT)
        ctx.unc = parse_unc(ctx.target)
        try:
            target_dir = ctx.unc.to_path(self.config.share_mount_root)
        except InvalidPathFormat as exc:
            raise TargetUnreachable(str(exc)) from exc
        if not target_dir.is_dir():
            raise TargetUnreachable(f"target {ctx.target} not reachable at {target_dir}")
        ctx.speedtest_dir = target_dir / self.config.speedtest_subdir
        try:
            ctx.speedtest_dir.mkdir(exist_ok=True)
        except OSError as exc:
            raise TargetUnreachable(f"cannot create {ctx.speedtest_dir}: {exc}") from exc
        ctx.payload_path = self.config.work_dir / f"payload_{ctx.unc.slug()}.bin"

    def _cold_provision(self, ctx: _ProbeContext) -> None:
        self._enter(ctx, ProbeState.COLD_PROVISION)
        # Stale selection from an earlier cold run must not leak into this one.
        try:
            self.warm_state.clear(ctx.target)
        except OSError as exc:
            raise ProvisionError(f"cannot reset warm state {self.warm_state.path}: {exc}") from exc
        artifact = self.provisioner.generate(
            ctx.payload_path,
            self.config.payload_size_bytes,
            self.config.timestamp_jitter_hours,
        )
        ctx.payload_size = artifact.size_bytes

    def _warm_locate(self, ctx: _ProbeContext) -> None:
        self._enter(ctx, ProbeState.WARM_LOCATE)
        try:
            entry = self.warm_state.get(ctx.target)
        except OSError as exc:
            raise MissingWarmArtifact(f"warm state {self.warm_state.path} unreadable: {exc}") from exc
        if entry is None:
            raise MissingWarmArtifact(f"no cold-run artifacts recorded for {ctx.target}")
        payload = Path(entry.payload_path)
        if not payload.is_file():
            raise MissingWarmArtifact(f"cold-run payload {payload} is missing")
        if not entry.read_file or not (self._read_pool(ctx) / entry.read_file).is_file():
            raise MissingWarmArtifact(f"cold-run read file {entry.read_file or '?'} is missing on {ctx.target}")
        ctx.payload_path = payload
        ctx.payload_size = payload.stat().st_size
        ctx.read_file = entry.read_file

    def _write_copy(self, ctx: _ProbeContext) -> None:
        self._enter(ctx, ProbeState.WRITE_COPY)
        dest = ctx.speedtest_dir / ctx.payload_path.name
        try:
            ctx.payload_size = ctx.payload_path.stat().st_size
            t0 = self._timer()
            shutil.copyfile(ctx.payload_path, dest)
            ctx.write_seconds = self._timer() - t0
        except OSError as exc:
            raise CopyError(f"write copy to {dest} failed: {exc}") from exc
        finally:
            _remove_quietly(dest)

    def _drain_wait(self, ctx: _ProbeContext, state: ProbeState) -> Optional[DrainResult]:
        self._enter(ctx, state)
        if not self.config.drain_enabled:
            return None
        result = self.drain.await_drain(
            self.config.drain_timeout_seconds,
            self.config.drain_remote_port,
            self.config.candidate_addresses,
        )
        ctx.drains.append(result)
        if not result.drained:
            logger.warning(
                f"{ctx.target} [{ctx.mode.value}] continuing after undrained {state.value} ({result.elapsed:.1f}s)",
                extra={"target": ctx.target, "mode": ctx.mode.value},
            )
        return result

    def _read_pool(self, ctx: _ProbeContext) -> Path:
        return ctx.speedtest_dir / self.config.read_pool_subdir

    def _select_read_file(self, ctx: _ProbeContext) -> str:
        pool = self._read_pool(ctx)
        try:
            names = sorted(p.name for p in pool.iterdir() if p.is_file())
        except FileNotFoundError:
            raise CopyError(f"read pool {pool} does not exist")
        except OSError as exc:
            raise CopyError(f"cannot list read pool {pool}: {exc}") from exc
        if not names:
            raise CopyError(f"read pool {pool} is empty")
        return names[0]

    def _read_copy(self, ctx: _ProbeContext) -> None:
        self._enter(ctx, ProbeState.READ_COPY)
        if ctx.mode is RunMode.COLD:
            ctx.read_file = self._select_read_file(ctx)
            entry = WarmEntry(
                payload_path=str(ctx.payload_path),
                read_file=ctx.read_file,
                created_utc=ctx.started.astimezone(timezone.utc).isoformat(),
            )
            try:
                self.warm_state.put(ctx.target, entry)
            except OSError as exc:
                raise CopyError(f"cannot record read selection in {self.warm_state.path}: {exc}") from exc

        source = self._read_pool(ctx) / ctx.read_file
        local = self.config.work_dir / f"readback_{ctx.unc.slug()}_{ctx.read_file}"
        try:
            t0 = self._timer()
            shutil.copyfile(source, local)
            ctx.read_seconds = self._timer() - t0
            ctx.read_bytes = local.stat().st_size
        except OSError as exc:
            raise CopyError(f"read copy from {source} failed: {exc}") from exc
        finally:
            _remove_quietly(local)

        if ctx.mode is RunMode.WARM:
            try:
                source.unlink()
            except OSError as exc:
                logger.warning(f"Could not remove consumed read file {source}: {exc}")

    def _finalize(self, ctx: _ProbeContext) -> Sample:
        self._enter(ctx, ProbeState.FINALIZE)
        write_mbps = compute_mbps(ctx.payload_size, ctx.write_seconds)
        read_mbps = compute_mbps(ctx.read_bytes, ctx.read_seconds)
        if ctx.mode is RunMode.WARM:
            try:
                self._discard_leftovers(ctx)
            except OSError as exc:
                raise CopyError(f"cannot clear warm state {self.warm_state.path}: {exc}") from exc
        self._enter(ctx, ProbeState.DONE)
        logger.info(
            f"{ctx.server} [{ctx.mode.value}] write {write_mbps} Mbps, read {read_mbps} Mbps",
            extra={"target": ctx.target, "mode": ctx.mode.value, "pass": ctx.pass_number},
        )
        return Sample(
            server=ctx.server,
            timestamp=ctx.started,
            status=STATUS_OK,
            write_seconds=round(ctx.write_seconds, 3),
            write_mbps=write_mbps,
            read_seconds=round(ctx.read_seconds, 3),
            read_mbps=read_mbps,
            source_host=self.config.source_host,
            payload_size_bytes=ctx.payload_size,
            mode=ctx.mode,
            pass_number=ctx.pass_number,
        )

    def _fail(self, ctx: _ProbeContext, exc: Exception) -> Sample:
        failed_in = ctx.state
        self._enter(ctx, ProbeState.FAILED)
        logger.error(
            f"{ctx.target} [{ctx.mode.value}] failed in {failed_in.value}: {exc}",
            extra={"target": ctx.target, "mode": ctx.mode.value, "error_kind": type(exc).__name__},
        )
        # A warm probe always consumes; a failed cold probe invalidates what it left behind.
        if not isinstance(exc, MissingWarmArtifact):
            try:
                self._discard_leftovers(ctx)
            except OSError as cleanup_exc:
                logger.warning(f"{ctx.target}: warm state not cleared after failure: {cleanup_exc}")
        return Sample(
            server=ctx.server,
            timestamp=ctx.started,
            status=str(exc) or type(exc).__name__,
            write_seconds=0.0,
            write_mbps=0.0,
            read_seconds=0.0,
            read_mbps=0.0,
            source_host=self.config.source_host,
            payload_size_bytes=ctx.payload_size,
            mode=ctx.mode,
            pass_number=ctx.pass_number,
            error_kind=type(exc).__name__,
        )

    def _discard_leftovers(self, ctx: _ProbeContext) -> None:
        if ctx.payload_path is not None:
            _remove_quietly(ctx.payload_path)
        self.warm_state.clear(ctx.target)


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.debug(f"Ignoring cleanup failure for {path}: {exc}")
