"""
Persistent sample log.

One CSV row per Sample, appended as soon as the sample exists; prior rows are
never rewritten. The header is written only when the file is new.
"""

import csv
import logging
from pathlib import Path
from typing import Dict, Iterable, List

import pandas as pd

from sharebench.probe import Sample

logger = logging.getLogger("sharebench.sample_log")

FIELDNAMES = [
    "Server",
    "TimeStamp",
    "Status",
    "WriteTime",
    "WriteMbps",
    "ReadTime",
    "ReadMbps",
    "SourceServer",
    "Size",
    "ColdRun",
]

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def sample_to_row(sample: Sample) -> Dict[str, object]:
    return {
        "Server": sample.server,
        "TimeStamp": sample.timestamp.strftime(TIMESTAMP_FORMAT),
        "Status": sample.status,
        "WriteTime": sample.write_seconds,
        "WriteMbps": sample.write_mbps,
        "ReadTime": sample.read_seconds,
        "ReadMbps": sample.read_mbps,
        "SourceServer": sample.source_host,
        "Size": sample.payload_size_bytes,
        "ColdRun": sample.cold,
    }


class SampleLog:
    def __init__(self, path: Path):
        self.path = Path(path)

    def append(self, sample: Sample) -> None:
        self.append_many([sample])

    def append_many(self, samples: Iterable[Sample]) -> int:
        rows = [sample_to_row(s) for s in samples]
        if not rows:
            return 0
        self.path.parent.mkdir(parents=True, exist_ok=True)
        new_file = not self.path.exists() or self.path.stat().st_size == 0
        with self.path.open("a", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=FIELDNAMES)
            if new_file:
                writer.writeheader()
            writer.writerows(rows)
        logger.debug(f"updated {self.path} ({len(rows)} rows)")
        return len(rows)

    def read(self) -> pd.DataFrame:
        """Load the whole log (all runs) for reporting."""
        if not self.path.exists():
            return pd.DataFrame(columns=FIELDNAMES)
        return pd.read_csv(self.path, parse_dates=["TimeStamp"])


def samples_frame(samples: List[Sample]) -> pd.DataFrame:
    return pd.DataFrame([sample_to_row(s) for s in samples], columns=FIELDNAMES)
