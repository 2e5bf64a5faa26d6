import logging
from typing import Dict, List, Optional, Sequence, Tuple

from .config import ALLOWED_CONFIG_KEYS, DEFAULT_CONFIG
from .db import JobStore, is_missing_table, translate_errors
from .errors import InvalidArgument, NotFound, StoreUnavailable
from .models import (
    ACTIVE_TABLE, COMPLETED_TABLE, FAILED_TABLE, PENDING, WORKING,
    SUMMARY_COLUMNS, TABLE_STATUSES, Job, normalize_table,
)

logger = logging.getLogger("jobctl.repository")


# ---------- Config ----------
def get_config(store: JobStore) -> Dict[str, str]:
    with translate_errors("reading config"):
        cur = store.execute(f"SELECT key, value FROM {store.config_table}")
        return {r["key"]: r["value"] for r in cur.fetchall()}


def get_int_setting(store: JobStore, key: str) -> int:
    """Read a numeric setting, falling back to its default when unset or unreadable."""
    try:
        raw = get_config(store).get(key, DEFAULT_CONFIG[key])
    except StoreUnavailable as e:
        logger.warning("Cannot read config %s (%s); using default %s", key, e, DEFAULT_CONFIG[key])
        raw = DEFAULT_CONFIG[key]
    try:
        return int(raw)
    except ValueError:
        logger.warning("Config %s=%r is not an integer; using %s", key, raw, DEFAULT_CONFIG[key])
        return int(DEFAULT_CONFIG[key])


def set_config(store: JobStore, key: str, value: str):
    if key not in ALLOWED_CONFIG_KEYS:
        raise InvalidArgument(f"Allowed keys: {', '.join(sorted(ALLOWED_CONFIG_KEYS))}")
    try:
        if int(value) < 1:
            raise ValueError
    except ValueError:
        raise InvalidArgument(f"{key} must be a positive integer.") from None
    with translate_errors("writing config"):
        with store.conn:
            store.execute(
                f"INSERT INTO {store.config_table}(key,value) VALUES(?,?) "
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (key, str(int(value))),
            )
    logger.info("Config updated: %s=%s", key, value)


# ---------- Statistics ----------
def _count(store: JobStore, logical_table: str, where: str = "1=1", params=()) -> int:
    """COUNT(*) over one table; a missing table counts as empty."""
    try:
        with translate_errors(f"counting {store.table(logical_table)}"):
            row = store.execute(
                f"SELECT COUNT(*) AS c FROM {store.table(logical_table)} WHERE {where}", params
            ).fetchone()
    except StoreUnavailable as e:
        if is_missing_table(e):
            logger.debug("Table %s is missing; counting it as empty", store.table(logical_table))
            return 0
        raise
    return int(row["c"] or 0)


def statistics(store: JobStore) -> Dict[str, int]:
    out = {
        "pending": _count(store, ACTIVE_TABLE, "status=?", (PENDING,)),
        "working": _count(store, ACTIVE_TABLE, "status=?", (WORKING,)),
        "completed": _count(store, COMPLETED_TABLE),
        "failed": _count(store, FAILED_TABLE),
    }
    out["total"] = out["pending"] + out["working"] + out["completed"] + out["failed"]
    return out


# ---------- Queries ----------
def job_filter(
    logical_table: str,
    statuses: Optional[Sequence[str]] = None,
    class_: Optional[str] = None,
    created_before: Optional[str] = None,
) -> Tuple[str, list]:
    """
    WHERE clause for one table. A status condition is only added when the
    filter narrows the table (e.g. `pending` inside the active table).
    """
    conditions, params = [], []
    table_statuses = TABLE_STATUSES[logical_table]
    if statuses:
        wanted = [s for s in table_statuses if s in statuses]
        if len(wanted) < len(table_statuses):
            conditions.append(f"status IN ({', '.join('?' for _ in wanted)})")
            params.extend(wanted)
    if class_:
        conditions.append("class = ?")
        params.append(class_)
    if created_before:
        conditions.append("created_at < ?")
        params.append(created_before)
    return (" AND ".join(conditions) or "1=1"), params


def candidate_tables(statuses: Optional[Sequence[str]]) -> List[str]:
    if not statuses:
        return list(TABLE_STATUSES)
    return [t for t, sts in TABLE_STATUSES.items() if set(sts) & set(statuses)]


def list_jobs(
    store: JobStore,
    statuses: Optional[Sequence[str]] = None,
    class_: Optional[str] = None,
    limit: int = 100,
) -> List[Job]:
    """
    Job summaries, newest first within each table. Every queried table is
    capped at `limit` rows and results are concatenated table by table
    (active, completed, failed) rather than merged.
    """
    if limit < 1:
        raise InvalidArgument("limit must be >= 1")
    jobs = []
    for table in candidate_tables(statuses):
        where, params = job_filter(table, statuses, class_)
        with translate_errors(f"listing {store.table(table)}"):
            rows = store.execute(
                f"""SELECT {', '.join(SUMMARY_COLUMNS)}
                    FROM {store.table(table)}
                    WHERE {where}
                    ORDER BY created_at DESC, id DESC
                    LIMIT ?""",
                (*params, limit),
            ).fetchall()
        jobs.extend(Job.from_row(r, table=table) for r in rows)
    logger.debug("Listed %d job(s) (statuses=%s, class=%s)", len(jobs), statuses, class_)
    return jobs


def count_jobs(
    store: JobStore,
    statuses: Optional[Sequence[str]] = None,
    class_: Optional[str] = None,
) -> int:
    total = 0
    for table in candidate_tables(statuses):
        where, params = job_filter(table, statuses, class_)
        total += _count(store, table, where, params)
    return total


def get_job(store: JobStore, job_id: int, table: str = ACTIVE_TABLE) -> Job:
    logical = normalize_table(table)
    with translate_errors(f"reading {store.table(logical)}"):
        row = store.execute(
            f"SELECT * FROM {store.table(logical)} WHERE id=?", (int(job_id),)
        ).fetchone()
    if not row:
        raise NotFound(f"Job with ID {job_id} not found in {table} table")
    return Job.from_row(row, table=logical)


def failed_jobs(store: JobStore, class_: Optional[str] = None, limit: int = 10) -> List[Job]:
    if limit < 1:
        raise InvalidArgument("limit must be >= 1")
    where, params = job_filter(FAILED_TABLE, None, class_)
    with translate_errors(f"listing {store.table(FAILED_TABLE)}"):
        rows = store.execute(
            f"SELECT * FROM {store.table(FAILED_TABLE)} WHERE {where} "
            "ORDER BY created_at DESC, id DESC LIMIT ?",
            (*params, limit),
        ).fetchall()
    return [Job.from_row(r, table=FAILED_TABLE) for r in rows]
