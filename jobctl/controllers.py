"""
Mutating operations on the job store: retrying failed jobs and purging
jobs by filter. Both support a dry-run mode that reports without writing.
"""
import logging
from typing import Optional

from .db import JobStore, is_missing_table, move_failed_to_active, translate_errors
from .errors import InvalidArgument, JobctlError, StoreUnavailable
from .models import FAILED_TABLE, BatchReport, normalize_status
from .repository import candidate_tables, failed_jobs, get_job, job_filter
from .utils import parse_age_to_seconds, ts_seconds_ago

logger = logging.getLogger("jobctl.controllers")


# ---------- Retry ----------
def retry_job(store: JobStore, job_id: int, dry_run: bool = False) -> Optional[int]:
    """
    Move one failed job back into the active table with tries reset.
    Returns the new active-table id, or None on a dry run.
    Raises NotFound when the id is not in the failed table.
    """
    job = get_job(store, job_id, FAILED_TABLE)
    if dry_run:
        return None
    new_id = move_failed_to_active(store, job)
    logger.info("Retried failed job %s (%s) as active job %s", job.id, job.class_, new_id)
    return new_id


def retry_jobs(
    store: JobStore,
    class_: Optional[str] = None,
    limit: int = 10,
    dry_run: bool = False,
) -> BatchReport:
    """Retry up to `limit` failed jobs, newest first; one failure never stops the batch."""
    report = BatchReport(action="retry", dry_run=dry_run)
    report.jobs = failed_jobs(store, class_=class_, limit=limit)
    if dry_run:
        return report

    for job in report.jobs:
        try:
            move_failed_to_active(store, job)
            report.succeeded += 1
        except JobctlError as e:
            logger.warning("Could not retry job %s: %s", job.id, e)
            report.add_error(f"job {job.id}: {e}")
    logger.info("Bulk retry: %d retried, %d failed", report.succeeded, report.failed)
    return report


# ---------- Purge ----------
def clear_jobs(
    store: JobStore,
    status: Optional[str] = None,
    class_: Optional[str] = None,
    older_than=None,
    dry_run: bool = False,
) -> BatchReport:
    """
    Delete jobs matching every given filter from each candidate table.
    At least one of status, class_ or older_than is required. `older_than`
    is an age (bare number = hours). On a dry run only counts are taken.
    """
    status = normalize_status(status)
    if not status and not class_ and older_than in (None, ""):
        raise InvalidArgument("Please specify at least one filter (status, class, or older-than)")

    cutoff = None
    if older_than not in (None, ""):
        cutoff = ts_seconds_ago(parse_age_to_seconds(older_than))

    statuses = [status] if status else None
    report = BatchReport(action="clear", dry_run=dry_run)

    for table in candidate_tables(statuses):
        name = store.table(table)
        where, params = job_filter(table, statuses, class_, created_before=cutoff)
        try:
            with translate_errors(f"clearing {name}"):
                if dry_run:
                    row = store.execute(
                        f"SELECT COUNT(*) AS c FROM {name} WHERE {where}", params
                    ).fetchone()
                    n = int(row["c"] or 0)
                else:
                    with store.conn:
                        n = store.execute(f"DELETE FROM {name} WHERE {where}", params).rowcount
        except StoreUnavailable as e:
            if is_missing_table(e):
                n = 0
            else:
                logger.warning("Could not clear %s: %s", name, e)
                report.add_error(f"{name}: {e}")
                continue
        except JobctlError as e:
            logger.warning("Could not clear %s: %s", name, e)
            report.add_error(f"{name}: {e}")
            continue
        report.per_table[name] = n
        report.succeeded += n

    if not dry_run:
        logger.info(
            "Cleared %d job(s) (status=%s, class=%s, older_than=%s)",
            report.succeeded, status, class_, older_than,
        )
    return report
