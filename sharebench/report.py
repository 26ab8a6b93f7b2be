"""
HTML report for one run.

Renders the run's samples (same columns as the CSV log) plus a per-server
average table, headed by the run summary: title, elapsed wall time and a
free-text description.
"""

import html
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List

import pandas as pd

from sharebench.probe import STATUS_OK, Sample
from sharebench.sample_log import samples_frame

logger = logging.getLogger("sharebench.report")

_STYLE = """
body { font-family: Segoe UI, Arial, sans-serif; font-size: 10pt; }
table { border-collapse: collapse; margin-bottom: 1.5em; }
th { background: #4472c4; color: #fff; padding: 4px 8px; text-align: left; }
td { border: 1px solid #d0d7e5; padding: 3px 8px; }
tr.failed td { background: #f8d7da; }
""".strip()


def format_elapsed(seconds: float) -> str:
    seconds = max(0, int(round(seconds)))
    h = seconds // 3600
    m = (seconds % 3600) // 60
    s = seconds % 60
    return f"{h}h {m}m {s}s"


@dataclass(frozen=True)
class RunSummary:
    title: str
    elapsed_seconds: float
    description: str = ""

    @property
    def elapsed_text(self) -> str:
        return format_elapsed(self.elapsed_seconds)


def server_averages(samples: List[Sample]) -> pd.DataFrame:
    """Mean Mbps per (server, cold/warm) over successful samples."""
    df = samples_frame(samples)
    ok = df[df["Status"] == STATUS_OK]
    if ok.empty:
        return pd.DataFrame(columns=["Server", "ColdRun", "Samples", "WriteMbps", "ReadMbps"])
    grouped = ok.groupby(["Server", "ColdRun"], sort=True).agg(
        Samples=("Status", "size"),
        WriteMbps=("WriteMbps", "mean"),
        ReadMbps=("ReadMbps", "mean"),
    )
    return grouped.round(2).reset_index()


def _sample_table(samples: List[Sample]) -> str:
    df = samples_frame(samples)
    head = "".join(f"<th>{html.escape(str(col))}</th>" for col in df.columns)
    rows = []
    for record in df.itertuples(index=False):
        # Failed rows stand out in mail clients.
        row_class = "" if record.Status == STATUS_OK else ' class="failed"'
        cells = "".join(f"<td>{html.escape(str(value))}</td>" for value in record)
        rows.append(f"<tr{row_class}>{cells}</tr>")
    return (
        '<table class="samples">\n'
        f"<thead><tr>{head}</tr></thead>\n"
        "<tbody>\n" + "\n".join(rows) + "\n</tbody>\n</table>"
    )


def render_html(samples: List[Sample], summary: RunSummary) -> str:
    averages = server_averages(samples)
    parts = [
        "<html><head><meta charset=\"utf-8\">",
        f"<title>{html.escape(summary.title)}</title>",
        f"<style>{_STYLE}</style></head><body>",
        f"<h2>{html.escape(summary.title)}</h2>",
        f"<p>Elapsed: {summary.elapsed_text}</p>",
    ]
    if summary.description:
        parts.append(f"<p>{html.escape(summary.description)}</p>")
    parts.append("<h3>Averages</h3>")
    parts.append(averages.to_html(index=False, border=0))
    parts.append("<h3>Samples</h3>")
    parts.append(_sample_table(samples))
    parts.append("</body></html>")
    return "\n".join(parts)


def write_report(body: str, reports_dir: Path, host: str) -> Path:
    reports_dir = Path(reports_dir)
    reports_dir.mkdir(parents=True, exist_ok=True)
    path = reports_dir / f"{host}-{time.strftime('%Y%m%d-%H%M%S')}.html"
    path.write_text(body, encoding="utf-8")
    logger.info(f"wrote report {path}")
    return path
