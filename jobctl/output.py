import csv
import io
import json
from typing import Dict, List, Optional, Sequence

import click

from .models import Job
from .utils import short_class

STAT_FIELDS = ("pending", "working", "completed", "failed", "total")

JOB_HEADERS = ("ID", "Class", "Status", "Priority", "Tries", "Created", "Runtime", "Last Run")
PREVIEW_HEADERS = JOB_HEADERS[:6]


def stats_lines(stats: Dict[str, int], previous: Optional[Dict[str, int]] = None) -> List[str]:
    """`Pending: 3` lines; with `previous`, changed fields get a colored ` (+N)` / ` (-N)`."""
    lines = []
    for f in STAT_FIELDS:
        line = f"{f.capitalize()}: {stats[f]}"
        if previous is not None:
            change = stats[f] - previous.get(f, 0)
            if change > 0:
                line += click.style(f" (+{change})", fg="green")
            elif change < 0:
                line += click.style(f" ({change})", fg="red")
        lines.append(line)
    return lines


def _cells(job: Job, headers: Sequence[str]) -> List[str]:
    values = {
        "ID": job.id,
        "Class": short_class(job.class_),
        "Status": job.status,
        "Priority": job.priority,
        "Tries": job.tries,
        "Created": job.created_at,
        "Runtime": job.runtime,
        "Last Run": job.lastrun,
    }
    return ["" if values[h] is None else str(values[h]) for h in headers]


def jobs_table(jobs: Sequence[Job], headers: Sequence[str] = JOB_HEADERS) -> str:
    rows = [_cells(j, headers) for j in jobs]
    widths = [max([len(h)] + [len(r[i]) for r in rows]) for i, h in enumerate(headers)]
    sep = "+-" + "-+-".join("-" * w for w in widths) + "-+"

    def fmt(cells):
        return "| " + " | ".join(c.ljust(w) for c, w in zip(cells, widths)) + " |"

    return "\n".join([sep, fmt(headers), sep] + [fmt(r) for r in rows] + [sep])


def jobs_csv(jobs: Sequence[Job]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(JOB_HEADERS)
    for j in jobs:
        writer.writerow(_cells(j, JOB_HEADERS))
    return buf.getvalue().rstrip("\n")


def status_json(stats: Dict[str, int], jobs: Sequence[Job]) -> str:
    return json.dumps({"stats": stats, "jobs": [j.summary() for j in jobs]}, indent=2)


def job_detail_lines(job: Job) -> List[str]:
    lines = [
        "=== Job Details ===",
        f"ID: {job.id}",
        f"Class: {job.class_}",
        f"Status: {job.status}",
        f"Priority: {job.priority}",
        f"Tries: {job.tries}",
        f"Created: {job.created_at}",
        f"Runtime: {job.runtime}",
        f"First Run: {job.firstrun}",
        f"Last Run: {job.lastrun}",
        f"Batch: {job.batch or 'N/A'}",
        f"Reason: {job.reason or 'N/A'}",
        "",
        "=== Job Arguments ===",
    ]
    payload = job.payload
    if payload is None:
        lines.append("No arguments")
    elif isinstance(payload, dict):
        for key, value in payload.items():
            shown = json.dumps(value) if isinstance(value, (dict, list)) else value
            lines.append(f"{key}: {shown}")
    elif isinstance(payload, str) and payload == job.args:
        lines.append(f"Raw args: {job.args}")
    else:
        lines.append(json.dumps(payload))
    return lines
