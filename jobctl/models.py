import json
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from .errors import InvalidArgument, PartialFailure

# Job States
PENDING = "pending"
WORKING = "working"
COMPLETE = "complete"
FAILED = "failed"

STATUSES = (PENDING, WORKING, COMPLETE, FAILED)
ACTIVE_STATUSES = (PENDING, WORKING)
STATUS_ALIASES = {"completed": COMPLETE}

# Logical table names (the physical name adds the store prefix)
ACTIVE_TABLE = "jobs"
COMPLETED_TABLE = "completed_jobs"
FAILED_TABLE = "failed_jobs"

# Order matters: listings and purges walk the tables in this order
TABLE_STATUSES = {
    ACTIVE_TABLE: ACTIVE_STATUSES,
    COMPLETED_TABLE: (COMPLETE,),
    FAILED_TABLE: (FAILED,),
}

# Names accepted by `inspect --table`
TABLE_ALIASES = {
    "jobs": ACTIVE_TABLE,
    "active": ACTIVE_TABLE,
    "completed": COMPLETED_TABLE,
    "completed_jobs": COMPLETED_TABLE,
    "failed": FAILED_TABLE,
    "failed_jobs": FAILED_TABLE,
}

JOB_COLUMNS = (
    "id", "class", "status", "priority", "tries", "args", "batch", "reason",
    "created_at", "firstrun", "lastrun", "runtime",
)
SUMMARY_COLUMNS = (
    "id", "class", "status", "priority", "tries", "created_at", "runtime", "lastrun",
)


def normalize_status(status: Optional[str]) -> Optional[str]:
    if status is None or status == "":
        return None
    s = STATUS_ALIASES.get(status.strip().lower(), status.strip().lower())
    if s not in STATUSES:
        raise InvalidArgument(
            f"Unknown status {status!r}. Allowed: {', '.join(STATUSES)}"
        )
    return s


def normalize_table(name: str) -> str:
    try:
        return TABLE_ALIASES[name.strip().lower()]
    except (KeyError, AttributeError):
        raise InvalidArgument(
            f"Unknown table {name!r}. Allowed: jobs, completed, failed"
        ) from None


def decode_args(raw) -> Any:
    """JSON payload when it decodes, otherwise the raw string."""
    if raw is None or raw == "":
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


@dataclass
class Job:
    id: int
    class_: str
    status: str
    priority: int = 0
    tries: int = 0
    args: Optional[str] = None
    batch: Optional[str] = None
    reason: Optional[str] = None
    created_at: Optional[str] = None
    firstrun: Optional[str] = None
    lastrun: Optional[str] = None
    runtime: Optional[str] = None
    table: Optional[str] = None

    @classmethod
    def from_row(cls, row, table: Optional[str] = None) -> "Job":
        keys = row.keys()
        data = {c: row[c] for c in JOB_COLUMNS if c in keys}
        data["class_"] = data.pop("class", None)
        return cls(table=table, **data)

    @property
    def payload(self) -> Any:
        return decode_args(self.args)

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "class": self.class_,
            "status": self.status,
            "priority": self.priority,
            "tries": self.tries,
            "created_at": self.created_at,
            "runtime": self.runtime,
            "lastrun": self.lastrun,
        }

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["class"] = d.pop("class_")
        d["args"] = self.payload
        return d


@dataclass
class BatchReport:
    """Aggregate result of a bulk retry or purge."""
    action: str
    dry_run: bool = False
    succeeded: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    errors_overflow: int = 0
    per_table: Dict[str, int] = field(default_factory=dict)
    jobs: List[Job] = field(default_factory=list)

    MAX_ERRORS = 10

    def add_error(self, message: str):
        self.failed += 1
        if len(self.errors) < self.MAX_ERRORS:
            self.errors.append(message)
        else:
            self.errors_overflow += 1

    def raise_for_failures(self):
        if self.failed:
            raise PartialFailure(self)
