"""
Cold-run leftovers that the following warm run must reuse.

A cold probe records which payload it left at the source and which ReadPool
file it pulled from the target; the warm probe for the same target reads the
entry back (possibly from a later process) and clears it when done.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger("sharebench.warm_state")

STATE_FILENAME = "warm_state.json"


@dataclass(frozen=True)
class WarmEntry:
    payload_path: str
    read_file: str = ""
    created_utc: str = ""


class WarmStateStore:
    def __init__(self, work_dir: Path):
        self.path = Path(work_dir) / STATE_FILENAME

    def _load(self) -> Dict[str, dict]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except ValueError as exc:
            logger.warning(f"Discarding unreadable warm state {self.path}: {exc}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, sort_keys=True)
        os.replace(tmp_path, self.path)

    def get(self, target: str) -> Optional[WarmEntry]:
        raw = self._load().get(target)
        if not isinstance(raw, dict) or not raw.get("payload_path"):
            return None
        return WarmEntry(
            payload_path=str(raw["payload_path"]),
            read_file=str(raw.get("read_file", "")),
            created_utc=str(raw.get("created_utc", "")),
        )

    def put(self, target: str, entry: WarmEntry) -> None:
        data = self._load()
        data[target] = asdict(entry)
        self._save(data)

    def clear(self, target: str) -> None:
        data = self._load()
        if data.pop(target, None) is not None:
            self._save(data)
