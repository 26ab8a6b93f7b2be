"""
Site env files for sharebench.

``.sbenv`` and ``.sbenv.local`` hold SHAREBENCH_* settings for one source
host. They are loaded into os.environ before config is built, never
overwriting variables that are already set, so an explicit export always
wins. Lines are ``KEY=value`` with an optional ``export`` prefix; malformed
lines are skipped with a warning naming the file and line.
"""

import logging
import os
import re
from pathlib import Path
from typing import Optional

logger = logging.getLogger("sharebench.env_loader")

ENV_FILES = (".sbenv", ".sbenv.local")

_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        return value[1:-1]
    # Unquoted values may carry a trailing comment.
    return value.split(" #", 1)[0].rstrip()


def _parse_env_file(path: Path) -> dict[str, str]:
    entries: dict[str, str] = {}
    if not path.is_file():
        return entries
    with open(path, encoding="utf-8") as fh:
        for lineno, raw in enumerate(fh, start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("export "):
                line = line[len("export "):].lstrip()
            key, sep, value = line.partition("=")
            key = key.strip()
            if not sep or not _KEY_RE.match(key):
                logger.warning(f"{path}:{lineno}: ignoring malformed line {raw.rstrip()!r}")
                continue
            entries[key] = _unquote(value.strip())
    return entries


def load_env_files(base_dir: Optional[Path] = None) -> dict[str, str]:
    """Load the site env files from ``base_dir`` (default: cwd); returns what was read."""
    base_dir = Path.cwd() if base_dir is None else Path(base_dir)

    loaded: dict[str, str] = {}
    for name in ENV_FILES:
        loaded.update(_parse_env_file(base_dir / name))

    for key, value in loaded.items():
        os.environ.setdefault(key, value)
    return loaded
