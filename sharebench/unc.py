"""
UNC target parsing.

Targets are configured as ``\\\\host\\share[\\sub\\path]`` strings. Forward
slashes are accepted as separators (``//host/share/sub``) since config files
written on POSIX hosts tend to use them.
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path, PureWindowsPath
from typing import Optional, Tuple

from sharebench.exceptions import InvalidPathFormat

# NetBIOS/DNS host or IPv4/IPv6 literal; share names exclude the reserved set.
_HOST_RE = re.compile(r"^[A-Za-z0-9_.:\[\]-]+$")
_SHARE_RE = re.compile(r'^[^<>:"/\\|?*]+$')


@dataclass(frozen=True)
class UncPath:
    host: str
    share: str
    subpath: Tuple[str, ...] = ()

    @property
    def server(self) -> str:
        """Server name used in samples (host part only)."""
        return self.host

    def __str__(self) -> str:
        parts = [self.host, self.share, *self.subpath]
        return "\\\\" + "\\".join(parts)

    def slug(self) -> str:
        """Filesystem-safe identifier for per-target local artifacts."""
        raw = "_".join([self.host, self.share, *self.subpath])
        return re.sub(r"[^A-Za-z0-9._-]+", "-", raw).strip("-")

    def to_path(self, mount_root: Optional[Path] = None) -> Path:
        """
        Map the UNC path to something the local filesystem can open.

        On Windows the UNC string itself is a valid path. Elsewhere shares are
        expected to be mounted as ``<mount_root>/<host>/<share>``.
        """
        if mount_root is None:
            if os.name == "nt":
                return Path(str(PureWindowsPath(str(self))))
            raise InvalidPathFormat(f"{self}: share_mount_root is required on this platform")
        return Path(mount_root, self.host, self.share, *self.subpath)


def parse_unc(value: str) -> UncPath:
    """Parse ``\\\\host\\share[\\sub]`` into its parts; raise InvalidPathFormat otherwise."""
    if not isinstance(value, str):
        raise InvalidPathFormat(f"target must be a string, got {type(value).__name__}")
    text = value.strip()
    if not (text.startswith("\\\\") or text.startswith("//")):
        raise InvalidPathFormat(f"{value!r}: expected \\\\host\\share")
    parts = [p for p in re.split(r"[\\/]+", text[2:]) if p]
    if len(parts) < 2:
        raise InvalidPathFormat(f"{value!r}: missing share name")
    host, share, *sub = parts
    if not _HOST_RE.match(host):
        raise InvalidPathFormat(f"{value!r}: invalid host {host!r}")
    for segment in [share, *sub]:
        if not _SHARE_RE.match(segment) or segment in (".", ".."):
            raise InvalidPathFormat(f"{value!r}: invalid path segment {segment!r}")
    return UncPath(host=host, share=share, subpath=tuple(sub))
