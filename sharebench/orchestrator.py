"""
Run orchestration: passes x targets x {cold, warm}.

Strictly sequential. For each pass and each target a cold probe is followed
by a warm probe, each followed by a drain wait; the orchestrator then sleeps
``inter_pass_delay_seconds`` before moving on (skipped after the final pair).
Failed probes are recorded and iteration continues; nothing is retried.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sharebench.config import RunConfiguration
from sharebench.drain import ConnectionDrainBarrier
from sharebench.probe import RunMode, Sample, ThroughputProbe
from sharebench.run_lock import marker_path, run_lock

logger = logging.getLogger("sharebench.orchestrator")

SampleSink = Callable[[Sample], None]


@dataclass
class RunResult:
    samples: List[Sample] = field(default_factory=list)
    started: Optional[datetime] = None
    finished: Optional[datetime] = None
    elapsed_seconds: float = 0.0
    lock_acquired: bool = False

    @property
    def failures(self) -> List[Sample]:
        return [s for s in self.samples if not s.ok]


class RunOrchestrator:
    def __init__(
        self,
        config: RunConfiguration,
        probe: Optional[ThroughputProbe] = None,
        drain: Optional[ConnectionDrainBarrier] = None,
        on_sample: Optional[SampleSink] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.drain = drain or ConnectionDrainBarrier(poll_interval=config.drain_poll_interval_seconds)
        self.probe = probe or ThroughputProbe(config, drain=self.drain)
        self.on_sample = on_sample
        self._sleep = sleep
        self._clock = clock

    def _record(self, samples: List[Sample], sample: Sample) -> None:
        samples.append(sample)
        if self.on_sample is None:
            return
        try:
            self.on_sample(sample)
        except OSError as exc:
            # In-memory samples still reach the report; only the persisted row is lost.
            logger.error(f"Sample sink failed for {sample.server}: {exc}")

    def _drain_wait(self, label: str) -> None:
        if not self.config.drain_enabled:
            return
        result = self.drain.await_drain(
            self.config.drain_timeout_seconds,
            self.config.drain_remote_port,
            self.config.candidate_addresses,
        )
        if not result.drained:
            logger.warning(f"Proceeding after {label} without full drain ({result.elapsed:.1f}s)")

    def run(self) -> List[Sample]:
        """Run every (pass, target, mode) probe and return samples in chronological order."""
        samples: List[Sample] = []
        targets = self.config.targets
        total_pairs = self.config.passes * len(targets)
        pair_index = 0
        for pass_number in range(1, self.config.passes + 1):
            for target in targets:
                pair_index += 1
                logger.info(
                    f"Pass {pass_number}/{self.config.passes} target {target} ({pair_index}/{total_pairs})",
                    extra={"target": target, "pass": pass_number},
                )
                self._record(samples, self.probe.run(target, RunMode.COLD, pass_number))
                self._drain_wait(f"cold probe of {target}")
                self._record(samples, self.probe.run(target, RunMode.WARM, pass_number))
                self._drain_wait(f"warm probe of {target}")
                if pair_index < total_pairs and self.config.inter_pass_delay_seconds > 0:
                    logger.info(f"Sleeping {self.config.inter_pass_delay_seconds:.0f}s before next test")
                    self._sleep(self.config.inter_pass_delay_seconds)
        return samples

    def execute(self) -> RunResult:
        """
        run() under the host's run lock.

        Raises:
            LockContention: lock held elsewhere and lock_policy is "abort".
        """
        result = RunResult()
        location = marker_path(self.config.shared_dir, self.config.source_host)
        with run_lock(
            location,
            self.config.source_host,
            policy=self.config.lock_policy,
            wait_seconds=self.config.lock_wait_seconds,
        ) as handle:
            result.lock_acquired = handle is not None
            result.started = datetime.now(timezone.utc).astimezone()
            t0 = self._clock()
            result.samples = self.run()
            result.elapsed_seconds = self._clock() - t0
            result.finished = datetime.now(timezone.utc).astimezone()
        ok = len(result.samples) - len(result.failures)
        logger.info(f"Run finished: {ok}/{len(result.samples)} samples OK in {result.elapsed_seconds:.0f}s")
        return result
