"""
Run configuration for sharebench.

Single source of truth for targets, payload sizing, drain-barrier and lock
parameters, output locations and mail settings.

Load order (later wins): built-in DEFAULTS -> ``sharebench`` section of
settings.json -> SHAREBENCH_* environment variables (.sbenv files are loaded
into the environment first, never overwriting explicit variables) -> CLI
overrides. The result is validated once and frozen into a RunConfiguration
that is passed explicitly to every component.
"""

import json
import logging
import os
import socket
from dataclasses import dataclass, field, replace
from ipaddress import ip_network
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional, Tuple

from sharebench.env_loader import load_env_files
from sharebench.exceptions import ConfigError

logger = logging.getLogger("sharebench.config")

ENV_PREFIX = "SHAREBENCH_"
SETTINGS_SECTION = "sharebench"

LOCK_POLICIES = ("abort", "warn")


DEFAULTS: Dict[str, Any] = {
    # Targets: ordered \\host\share[\sub] strings
    "targets": [],
    "passes": 1,
    # 512 MiB payload per probe
    "payload_size_bytes": 512 * 1024 * 1024,
    "timestamp_jitter_hours": 0.0,

    # Drain barrier (SMB sessions on 445 linger after copies)
    "drain_enabled": True,
    "drain_timeout_seconds": 120,
    "drain_poll_interval_seconds": 1.0,
    "drain_remote_port": 445,
    # Explicit addresses or CIDR ranges; target hostnames are resolved and added at startup.
    "candidate_addresses": [],
    "resolve_target_addresses": True,

    # Sleep between (target, pass) pairs
    "inter_pass_delay_seconds": 60.0,

    # Local side: payload and read-back copies live here
    "work_dir": "work",
    # Shared run directory: lock markers, sample log, reports
    "shared_dir": "shared",
    # POSIX hosts: \\host\share is mounted at <share_mount_root>/<host>/<share>
    "share_mount_root": "",
    "speedtest_subdir": "SpeedTest",
    "read_pool_subdir": "ReadPool",
    "source_host": "",

    # Run lock
    "lock_policy": "abort",
    "lock_wait_seconds": 0.0,

    # Reporting
    "sample_log_name": "SpeedTest.csv",
    "report_title": "File share speed test",
    "report_description": "",

    # Mail
    "mail_enabled": False,
    "smtp_host": "",
    "smtp_port": 25,
    "mail_from": "",
    "mail_to": [],

    # Logging
    "log_dir": "logs",
    "log_level": "INFO",
}

_KEY_TYPES: Dict[str, Any] = {
    "targets": list,
    "passes": int,
    "payload_size_bytes": int,
    "timestamp_jitter_hours": float,
    "drain_enabled": bool,
    "drain_timeout_seconds": int,
    "drain_poll_interval_seconds": float,
    "drain_remote_port": int,
    "candidate_addresses": list,
    "resolve_target_addresses": bool,
    "inter_pass_delay_seconds": float,
    "work_dir": str,
    "shared_dir": str,
    "share_mount_root": str,
    "speedtest_subdir": str,
    "read_pool_subdir": str,
    "source_host": str,
    "lock_policy": str,
    "lock_wait_seconds": float,
    "sample_log_name": str,
    "report_title": str,
    "report_description": str,
    "mail_enabled": bool,
    "smtp_host": str,
    "smtp_port": int,
    "mail_from": str,
    "mail_to": list,
    "log_dir": str,
    "log_level": str,
}


def _coerce(key: str, value: Any, expected_type: Any) -> Any:
    """Convert an env/settings literal to the expected type."""
    if expected_type is bool:
        if isinstance(value, bool):
            return value
        lowered = str(value).strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        raise ConfigError(f"Invalid bool value for {key}: {value}")
    if expected_type is list:
        if isinstance(value, (list, tuple)):
            return list(value)
        if isinstance(value, str):
            return [item.strip() for item in value.replace(";", ",").split(",") if item.strip()]
        raise ConfigError(f"Invalid list value for {key}: {value!r}")
    if expected_type is float and isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, expected_type) and not isinstance(value, bool):
        return value
    try:
        return expected_type(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid {expected_type.__name__} value for {key}: {value!r}")


def validate_config(cfg: Dict[str, Any]) -> None:
    """
    Ensure all keys exist with correct types/ranges.
    Raise ConfigError("<reason>") on any violation.
    """
    missing_keys = set(_KEY_TYPES) - set(cfg)
    if missing_keys:
        raise ConfigError(f"config missing required keys: {', '.join(sorted(missing_keys))}")

    unknown_keys = set(cfg) - set(_KEY_TYPES)
    if unknown_keys:
        raise ConfigError(f"unknown config keys: {', '.join(sorted(unknown_keys))}")

    for key, expected_type in _KEY_TYPES.items():
        value = cfg[key]
        if expected_type is float and isinstance(value, int) and not isinstance(value, bool):
            continue
        if expected_type is int and isinstance(value, bool):
            raise ConfigError(f"config[{key}] must be int, got bool")
        if not isinstance(value, expected_type):
            raise ConfigError(f"config[{key}] must be {expected_type.__name__}, got {type(value).__name__}")

    if cfg["passes"] < 1:
        raise ConfigError(f"config[passes] must be >= 1, got {cfg['passes']}")
    if cfg["payload_size_bytes"] <= 0:
        raise ConfigError(f"config[payload_size_bytes] must be > 0, got {cfg['payload_size_bytes']}")
    if cfg["drain_timeout_seconds"] < 0:
        raise ConfigError("config[drain_timeout_seconds] must be >= 0")
    if cfg["drain_poll_interval_seconds"] <= 0:
        raise ConfigError("config[drain_poll_interval_seconds] must be > 0")
    for key in ("drain_remote_port", "smtp_port"):
        if not (1 <= cfg[key] <= 65535):
            raise ConfigError(f"config[{key}] must be valid port (1-65535), got {cfg[key]}")
    for key in ("inter_pass_delay_seconds", "lock_wait_seconds", "timestamp_jitter_hours"):
        if cfg[key] < 0:
            raise ConfigError(f"config[{key}] must be >= 0, got {cfg[key]}")
    if cfg["lock_policy"] not in LOCK_POLICIES:
        raise ConfigError(f"config[lock_policy] must be one of {LOCK_POLICIES}, got {cfg['lock_policy']!r}")
    for key in ("speedtest_subdir", "read_pool_subdir", "sample_log_name", "work_dir", "shared_dir"):
        if not cfg[key]:
            raise ConfigError(f"config[{key}] must be non-empty string")

    for entry in cfg["targets"]:
        if not isinstance(entry, str) or not entry.strip():
            raise ConfigError(f"config[targets] entries must be non-empty strings, got {entry!r}")

    for entry in cfg["candidate_addresses"]:
        try:
            ip_network(str(entry), strict=False)
        except ValueError as exc:
            raise ConfigError(f"config[candidate_addresses] invalid address/range {entry!r}: {exc}")

    if cfg["mail_enabled"]:
        if not cfg["smtp_host"]:
            raise ConfigError("config[smtp_host] is required when mail_enabled")
        if not cfg["mail_from"] or not cfg["mail_to"]:
            raise ConfigError("config[mail_from] and config[mail_to] are required when mail_enabled")


def _apply_env_overrides(cfg: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Apply SHAREBENCH_<KEY> environment variable overrides to config."""
    env = os.environ if environ is None else environ
    result = cfg.copy()
    for key, expected_type in _KEY_TYPES.items():
        env_var = ENV_PREFIX + key.upper()
        if env_var in env:
            result[key] = _coerce(key, env[env_var], expected_type)
    return result


def _read_settings(settings_path: Path) -> Dict[str, Any]:
    with open(settings_path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {settings_path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"{settings_path}: top level must be an object")
    section = data.get(SETTINGS_SECTION, data)
    if not isinstance(section, dict):
        raise ConfigError(f"{settings_path}: section '{SETTINGS_SECTION}' must be an object")
    return section


@dataclass(frozen=True)
class RunConfiguration:
    """Immutable run parameters, built once at startup."""
    targets: Tuple[str, ...] = ()
    passes: int = 1
    payload_size_bytes: int = DEFAULTS["payload_size_bytes"]
    timestamp_jitter_hours: float = 0.0
    drain_enabled: bool = True
    drain_timeout_seconds: int = 120
    drain_poll_interval_seconds: float = 1.0
    drain_remote_port: int = 445
    candidate_addresses: FrozenSet[str] = frozenset()
    resolve_target_addresses: bool = True
    inter_pass_delay_seconds: float = 60.0
    work_dir: Path = Path("work")
    shared_dir: Path = Path("shared")
    share_mount_root: Optional[Path] = None
    speedtest_subdir: str = "SpeedTest"
    read_pool_subdir: str = "ReadPool"
    source_host: str = field(default_factory=socket.gethostname)
    lock_policy: str = "abort"
    lock_wait_seconds: float = 0.0
    sample_log_name: str = "SpeedTest.csv"
    report_title: str = "File share speed test"
    report_description: str = ""
    mail_enabled: bool = False
    smtp_host: str = ""
    smtp_port: int = 25
    mail_from: str = ""
    mail_to: Tuple[str, ...] = ()
    log_dir: Path = Path("logs")
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RunConfiguration":
        cfg = dict(DEFAULTS)
        cfg.update(d)
        validate_config(cfg)
        return cls(
            targets=tuple(t.strip() for t in cfg["targets"]),
            passes=cfg["passes"],
            payload_size_bytes=cfg["payload_size_bytes"],
            timestamp_jitter_hours=float(cfg["timestamp_jitter_hours"]),
            drain_enabled=cfg["drain_enabled"],
            drain_timeout_seconds=cfg["drain_timeout_seconds"],
            drain_poll_interval_seconds=float(cfg["drain_poll_interval_seconds"]),
            drain_remote_port=cfg["drain_remote_port"],
            candidate_addresses=frozenset(str(a) for a in cfg["candidate_addresses"]),
            resolve_target_addresses=cfg["resolve_target_addresses"],
            inter_pass_delay_seconds=float(cfg["inter_pass_delay_seconds"]),
            work_dir=Path(cfg["work_dir"]),
            shared_dir=Path(cfg["shared_dir"]),
            share_mount_root=Path(cfg["share_mount_root"]) if cfg["share_mount_root"] else None,
            speedtest_subdir=cfg["speedtest_subdir"],
            read_pool_subdir=cfg["read_pool_subdir"],
            source_host=cfg["source_host"] or socket.gethostname(),
            lock_policy=cfg["lock_policy"],
            lock_wait_seconds=float(cfg["lock_wait_seconds"]),
            sample_log_name=cfg["sample_log_name"],
            report_title=cfg["report_title"],
            report_description=cfg["report_description"],
            mail_enabled=cfg["mail_enabled"],
            smtp_host=cfg["smtp_host"],
            smtp_port=cfg["smtp_port"],
            mail_from=cfg["mail_from"],
            mail_to=tuple(cfg["mail_to"]),
            log_dir=Path(cfg["log_dir"]),
            log_level=cfg["log_level"],
        )

    def with_overrides(self, **changes: Any) -> "RunConfiguration":
        return replace(self, **changes)

    @property
    def sample_log_path(self) -> Path:
        return self.shared_dir / self.sample_log_name

    @property
    def reports_dir(self) -> Path:
        return self.shared_dir / "reports"


def load_run_config(
    settings_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
    *,
    env_dir: Optional[Path] = None,
) -> RunConfiguration:
    """
    Build the RunConfiguration for this process.

    Args:
        settings_path: Optional settings.json; its ``sharebench`` section (or the
            whole document when the section is absent) is merged over DEFAULTS.
        overrides: CLI-level values applied last (None values are ignored).
        env_dir: Directory holding .sbenv files (defaults to the working directory).
    """
    load_env_files(env_dir)

    cfg = dict(DEFAULTS)
    if settings_path is not None:
        settings_path = Path(settings_path)
        if not settings_path.exists():
            raise ConfigError(f"settings file not found: {settings_path}")
        for key, value in _read_settings(settings_path).items():
            if key not in _KEY_TYPES:
                raise ConfigError(f"{settings_path}: unknown key {key!r}")
            cfg[key] = _coerce(key, value, _KEY_TYPES[key])
        logger.info(f"Loaded settings from {settings_path}")

    cfg = _apply_env_overrides(cfg)

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key not in _KEY_TYPES:
            raise ConfigError(f"unknown override key {key!r}")
        cfg[key] = _coerce(key, value, _KEY_TYPES[key])

    return RunConfiguration.from_dict(cfg)
