"""
Unified CLI entrypoint for sharebench.

Supports subcommands:
- run: cold/warm throughput run over every configured target (locked per host)
- seed-pool: fill each target's ReadPool with random files for the read phase
- drain-check: run the TCP drain barrier once and print the result

Exit codes: 0 run completed, 1 configuration error, 2 run lock held elsewhere.
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from sharebench.config import RunConfiguration, load_run_config
from sharebench.drain import ConnectionDrainBarrier, resolve_candidate_addresses
from sharebench.exceptions import ConfigError, InvalidPathFormat, LockContention, NotificationError, ProvisionError
from sharebench.logging_utils import configure_file_logger, get_logger
from sharebench.notify import send_report
from sharebench.orchestrator import RunOrchestrator
from sharebench.payload import PayloadProvisioner
from sharebench.report import RunSummary, render_html, write_report
from sharebench.sample_log import SampleLog
from sharebench.unc import parse_unc

logger = get_logger("sharebench.cli")

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_LOCKED = 2


def _target_hosts(cfg: RunConfiguration) -> List[str]:
    hosts = []
    for target in cfg.targets:
        try:
            hosts.append(parse_unc(target).host)
        except InvalidPathFormat:
            # Reported per probe as a failed sample.
            continue
    return hosts


def _prepare(args: argparse.Namespace) -> RunConfiguration:
    overrides = {
        "passes": getattr(args, "passes", None),
        "targets": getattr(args, "target", None) or None,
    }
    if getattr(args, "no_drain", False):
        overrides["drain_enabled"] = False
    if getattr(args, "no_mail", False):
        overrides["mail_enabled"] = False
    cfg = load_run_config(Path(args.settings) if args.settings else None, overrides)

    get_logger(level=cfg.log_level)
    if args.quiet:
        logging.getLogger("sharebench").setLevel(logging.WARNING)

    if cfg.resolve_target_addresses:
        cfg = cfg.with_overrides(
            candidate_addresses=resolve_candidate_addresses(cfg.candidate_addresses, _target_hosts(cfg))
        )
    return cfg


def run_command(cfg: RunConfiguration) -> int:
    transcript = configure_file_logger("sharebench", cfg.log_dir)
    logger.info(f"Transcript: {transcript}")
    if not cfg.targets:
        logger.error("No targets configured")
        return EXIT_CONFIG

    sample_log = SampleLog(cfg.sample_log_path)
    orchestrator = RunOrchestrator(cfg, on_sample=sample_log.append)
    try:
        result = orchestrator.execute()
    except LockContention as exc:
        logger.error(f"Refusing to start: {exc}")
        return EXIT_LOCKED

    summary = RunSummary(
        title=f"{cfg.report_title} - {cfg.source_host}",
        elapsed_seconds=result.elapsed_seconds,
        description=cfg.report_description,
    )
    body = render_html(result.samples, summary)
    try:
        write_report(body, cfg.reports_dir, cfg.source_host)
    except OSError as exc:
        # Samples are already in the CSV log; the mail below still carries the report.
        logger.error(f"Could not write report to {cfg.reports_dir}: {exc}")

    if cfg.mail_enabled:
        try:
            send_report(body, summary.title, cfg.mail_from, cfg.mail_to, cfg.smtp_host, cfg.smtp_port)
        except NotificationError as exc:
            # Samples are already in the CSV log; a lost mail is not a failed run.
            logger.error(str(exc))
    return EXIT_OK


def seed_pool_command(cfg: RunConfiguration, count: int, size_bytes: Optional[int] = None) -> int:
    provisioner = PayloadProvisioner()
    size = cfg.payload_size_bytes if size_bytes is None else size_bytes
    stamp = time.strftime("%Y%m%d%H%M%S")
    failures = 0
    for target in cfg.targets:
        try:
            target_dir = parse_unc(target).to_path(cfg.share_mount_root)
        except InvalidPathFormat as exc:
            logger.error(str(exc))
            failures += 1
            continue
        if not target_dir.is_dir():
            logger.error(f"{target} not reachable at {target_dir}")
            failures += 1
            continue
        pool = target_dir / cfg.speedtest_subdir / cfg.read_pool_subdir
        try:
            for i in range(count):
                provisioner.generate(pool / f"seed_{stamp}_{i:03d}.bin", size, cfg.timestamp_jitter_hours)
        except ProvisionError as exc:
            logger.error(f"Seeding {pool} failed: {exc}")
            failures += 1
            continue
        logger.info(f"Seeded {count} file(s) of {size} bytes into {pool}")
    return EXIT_OK if failures == 0 else EXIT_CONFIG


def drain_check_command(cfg: RunConfiguration, timeout: Optional[float]) -> int:
    barrier = ConnectionDrainBarrier(poll_interval=cfg.drain_poll_interval_seconds)
    result = barrier.await_drain(
        cfg.drain_timeout_seconds if timeout is None else timeout,
        cfg.drain_remote_port,
        cfg.candidate_addresses,
    )
    print(json.dumps({
        "drained": result.drained,
        "elapsed_s": round(result.elapsed, 3),
        "remaining": result.remaining,
        "error": result.error,
        "candidates": sorted(cfg.candidate_addresses),
    }, indent=2))
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entrypoint with subcommands."""
    parser = argparse.ArgumentParser(description="File share cold/warm throughput tester")
    parser.add_argument("--settings", help="Path to settings.json (section 'sharebench')")
    parser.add_argument("--quiet", action="store_true",
                        help="Suppress informational logs (warnings/errors still shown)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the throughput test")
    run_parser.add_argument("--passes", type=int, help="Number of passes over all targets")
    run_parser.add_argument("--target", action="append",
                            help="Target \\\\host\\share (repeatable; replaces configured targets)")
    run_parser.add_argument("--no-drain", action="store_true", help="Skip TCP drain waits")
    run_parser.add_argument("--no-mail", action="store_true", help="Do not mail the report")

    seed_parser = subparsers.add_parser("seed-pool", help="Fill target ReadPools with random files")
    seed_parser.add_argument("--target", action="append", help="Target \\\\host\\share (repeatable)")
    seed_parser.add_argument("--count", type=int, default=5, help="Files per target (default: 5)")
    seed_parser.add_argument("--size", type=int, help="Bytes per file (default: payload_size_bytes)")

    drain_parser = subparsers.add_parser("drain-check", help="Wait for SMB sessions to drain once")
    drain_parser.add_argument("--target", action="append", help="Target \\\\host\\share (repeatable)")
    drain_parser.add_argument("--timeout", type=float, help="Seconds (default: drain_timeout_seconds)")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_CONFIG

    try:
        cfg = _prepare(args)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_CONFIG

    if args.command == "run":
        return run_command(cfg)
    if args.command == "seed-pool":
        if args.count < 1:
            print("Error: --count must be >= 1", file=sys.stderr)
            return EXIT_CONFIG
        if args.size is not None and args.size < 1:
            print("Error: --size must be >= 1", file=sys.stderr)
            return EXIT_CONFIG
        return seed_pool_command(cfg, args.count, args.size)
    return drain_check_command(cfg, args.timeout)


if __name__ == "__main__":
    sys.exit(main())
