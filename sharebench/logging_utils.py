import json, logging, sys, time
from pathlib import Path
from typing import Optional

_RESERVED = (
    "msg", "args", "exc_info", "exc_text", "stack_info", "stack_level", "created",
    "msecs", "relativeCreated", "levelno", "levelname", "pathname", "filename",
    "module", "lineno", "funcName", "thread", "threadName", "processName", "process",
    "taskName",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        # Allow extra fields via record.__dict__ (filtered)
        for k, v in record.__dict__.items():
            if k in _RESERVED or k in payload:
                continue
            try:
                json.dumps({k: v})
                payload[k] = v
            except (TypeError, ValueError):
                payload[k] = str(v)
        return json.dumps(payload)


def get_logger(name: str = "sharebench", level: Optional[str] = None) -> logging.Logger:
    """Return the JSON stdout logger; children of ``sharebench`` share its handler."""
    root = logging.getLogger("sharebench")
    if not root.handlers:
        root.setLevel(logging.INFO)
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(JsonFormatter())
        root.addHandler(h)
        root.propagate = False
    if level:
        root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    return logging.getLogger(name)


def configure_file_logger(role: str, log_dir: Path, logger: logging.Logger | None = None) -> Path:
    """Attach a JSON file handler (the run transcript) and return its path."""

    active_logger = logger or get_logger()

    # Drop any previous file handlers we attached to avoid duplicate writes during tests.
    for handler in list(active_logger.handlers):
        if getattr(handler, "_sharebench_file_handler", False):
            active_logger.removeHandler(handler)
            handler.close()

    logs_dir = Path(log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = time.strftime("%Y%m%d-%H%M%S", time.gmtime())
    path = logs_dir / f"{role}-{timestamp}.log"

    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setFormatter(JsonFormatter())
    file_handler._sharebench_file_handler = True  # type: ignore[attr-defined]
    active_logger.addHandler(file_handler)

    return path
