import logging
import re
import sqlite3
from contextlib import contextmanager

from . import config
from .config import DEFAULT_CONFIG
from .errors import InvalidArgument, NotFound, StoreError, StoreUnavailable
from .models import (
    ACTIVE_TABLE, COMPLETED_TABLE, FAILED_TABLE, PENDING, COMPLETE, FAILED, JOB_COLUMNS,
    TABLE_STATUSES,
)
from .utils import now_ts

logger = logging.getLogger("jobctl.db")

PREFIX_RE = re.compile(r"^[A-Za-z0-9_]*$")

JOB_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS {table} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    class TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT '{status}',
    priority INTEGER NOT NULL DEFAULT 0,
    tries INTEGER NOT NULL DEFAULT 0,
    args TEXT,
    batch TEXT,
    reason TEXT,
    created_at TEXT NOT NULL,
    firstrun TEXT,
    lastrun TEXT,
    runtime TEXT
);
CREATE INDEX IF NOT EXISTS idx_{table}_created ON {table}(created_at);
CREATE INDEX IF NOT EXISTS idx_{table}_class ON {table}(class);
"""

CONFIG_SCHEMA = """
CREATE TABLE IF NOT EXISTS {table} (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

UNAVAILABLE_MARKERS = ("no such table", "unable to open", "database is locked", "disk i/o error")


@contextmanager
def translate_errors(what: str):
    """Turn sqlite3 errors raised inside the block into jobctl store errors."""
    try:
        yield
    except sqlite3.OperationalError as e:
        msg = str(e).lower()
        if any(m in msg for m in UNAVAILABLE_MARKERS):
            raise StoreUnavailable(f"{what}: {e}") from e
        raise StoreError(f"{what}: {e}") from e
    except sqlite3.Error as e:
        raise StoreError(f"{what}: {e}") from e


def is_missing_table(exc: BaseException) -> bool:
    cause = exc.__cause__ if exc.__cause__ is not None else exc
    return isinstance(cause, sqlite3.OperationalError) and "no such table" in str(cause).lower()


class JobStore:
    """A connection to the job tables plus the prefix that names them."""

    def __init__(self, conn: sqlite3.Connection, prefix: str = ""):
        if not PREFIX_RE.match(prefix or ""):
            raise InvalidArgument(f"Invalid table prefix: {prefix!r}")
        self.conn = conn
        self.prefix = prefix or ""

    def table(self, logical: str) -> str:
        return f"{self.prefix}{logical}"

    @property
    def config_table(self) -> str:
        return self.table("config")

    def execute(self, sql: str, params=()):
        logger.debug("SQL %s %r", " ".join(sql.split()), params)
        return self.conn.execute(sql, params)

    def close(self):
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def connect_db(path: str = None, prefix: str = None) -> JobStore:
    path = path or config.DB_FILE
    prefix = config.TABLE_PREFIX if prefix is None else prefix
    try:
        conn = sqlite3.connect(path)
    except sqlite3.Error as e:
        raise StoreUnavailable(f"cannot open {path}: {e}") from e
    conn.row_factory = sqlite3.Row
    logger.debug("Opened job store %s (prefix=%r)", path, prefix)
    try:
        return JobStore(conn, prefix)
    except InvalidArgument:
        conn.close()
        raise


def init_db(store: JobStore):
    """Create the job tables and config table, seeding config defaults."""
    with translate_errors("initialising job store"):
        for logical, status in (
            (ACTIVE_TABLE, PENDING),
            (COMPLETED_TABLE, COMPLETE),
            (FAILED_TABLE, FAILED),
        ):
            store.conn.executescript(JOB_TABLE_SCHEMA.format(table=store.table(logical), status=status))
        store.conn.executescript(CONFIG_SCHEMA.format(table=store.config_table))
        with store.conn:
            for k, v in DEFAULT_CONFIG.items():
                store.execute(
                    f"INSERT OR IGNORE INTO {store.config_table}(key, value) VALUES(?,?)", (k, v)
                )


def _insert(store: JobStore, logical_table: str, fields: dict) -> int:
    cols = [c for c in JOB_COLUMNS if c in fields and (c != "id" or fields[c] is not None)]
    placeholders = ", ".join("?" for _ in cols)
    cur = store.execute(
        f"INSERT INTO {store.table(logical_table)} ({', '.join(cols)}) VALUES ({placeholders})",
        tuple(fields[c] for c in cols),
    )
    return cur.lastrowid


def insert_job(store: JobStore, logical_table: str, **fields) -> int:
    """
    Insert one job row and return its id.
    `class` is passed as `class_`; `created_at` defaults to now.
    """
    if "class_" in fields:
        fields["class"] = fields.pop("class_")
    if not fields.get("class"):
        raise InvalidArgument("Job class cannot be empty.")
    allowed = TABLE_STATUSES[logical_table]
    fields.setdefault("status", allowed[0])
    if fields["status"] not in allowed:
        raise InvalidArgument(
            f"Status {fields['status']!r} does not belong in {store.table(logical_table)} "
            f"(allowed: {', '.join(allowed)})"
        )
    fields.setdefault("created_at", now_ts())
    with translate_errors(f"inserting into {store.table(logical_table)}"):
        with store.conn:
            return _insert(store, logical_table, fields)


def move_failed_to_active(store: JobStore, job) -> int:
    """
    Re-create a failed job in the active table and delete the failed row,
    both in one transaction. Returns the new active-table id.
    """
    ts = now_ts()
    fields = {
        "class": job.class_,
        "status": PENDING,
        "priority": job.priority,
        "tries": 0,
        "args": job.args,
        "batch": job.batch,
        "reason": "",
        "created_at": ts,
        "firstrun": job.firstrun,
        "lastrun": ts,
        "runtime": ts,
    }
    with translate_errors(f"retrying failed job {job.id}"):
        with store.conn:
            new_id = _insert(store, ACTIVE_TABLE, fields)
            cur = store.execute(
                f"DELETE FROM {store.table(FAILED_TABLE)} WHERE id=?", (job.id,)
            )
            if cur.rowcount != 1:
                # Someone else consumed the row first; undo the insert
                raise NotFound(f"Failed job with ID {job.id} not found")
    return new_id
