import json

import pytest

from jobctl.controllers import clear_jobs, retry_job, retry_jobs
from jobctl.errors import InvalidArgument, NotFound, PartialFailure, StoreError
from jobctl.models import ACTIVE_TABLE, COMPLETED_TABLE, FAILED_TABLE
from jobctl.repository import get_job, list_jobs, statistics


def _rows(store, table):
    return store.conn.execute(f"SELECT * FROM {store.table(table)} ORDER BY id").fetchall()


def _block_delete(store, job_id):
    store.conn.executescript(
        f"""CREATE TRIGGER block_{job_id} BEFORE DELETE ON {store.table(FAILED_TABLE)}
            WHEN OLD.id = {job_id}
            BEGIN SELECT RAISE(ABORT, 'row is locked'); END;"""
    )


# ---------- Retry ----------
def test_retry_moves_failed_job_to_active(store, make_job):
    make_job(FAILED_TABLE, "Sync", id=7, reason="timeout", tries=5, priority=3,
             batch="b-9", args={"directory_id": 4}, firstrun="2024-01-01 00:00:00")

    new_id = retry_job(store, 7)

    with pytest.raises(NotFound):
        get_job(store, 7, "failed")
    job = get_job(store, new_id, "jobs")
    assert job.class_ == "Sync"
    assert job.tries == 0
    assert job.status == "pending"
    assert job.priority == 3
    assert job.batch == "b-9"
    assert job.payload == {"directory_id": 4}
    assert job.firstrun == "2024-01-01 00:00:00"
    assert not job.reason
    assert job.lastrun and job.runtime
    assert len(_rows(store, ACTIVE_TABLE)) == 1


def test_retry_unknown_id_changes_nothing(seeded):
    before = statistics(seeded)
    with pytest.raises(NotFound):
        retry_job(seeded, 12345)
    assert statistics(seeded) == before


def test_retry_dry_run_does_not_mutate(seeded):
    failed_id = list_jobs(seeded, ["failed"])[0].id
    before = statistics(seeded)
    assert retry_job(seeded, failed_id, dry_run=True) is None
    assert statistics(seeded) == before


def test_retry_is_atomic_when_delete_fails(store, make_job):
    job_id = make_job(FAILED_TABLE, "Sync", reason="boom")
    _block_delete(store, job_id)

    with pytest.raises(StoreError):
        retry_job(store, job_id)

    # neither duplicated nor lost
    assert len(_rows(store, ACTIVE_TABLE)) == 0
    assert [r["id"] for r in _rows(store, FAILED_TABLE)] == [job_id]


def test_retry_twice_fails_cleanly(store, make_job):
    job_id = make_job(FAILED_TABLE)
    retry_job(store, job_id)
    with pytest.raises(NotFound):
        retry_job(store, job_id)
    assert len(_rows(store, ACTIVE_TABLE)) == 1


def test_bulk_retry_by_class_newest_first_with_limit(store, make_job):
    oldest = make_job(FAILED_TABLE, "Sync", hours_ago=30)
    middle = make_job(FAILED_TABLE, "Sync", hours_ago=20)
    newest = make_job(FAILED_TABLE, "Sync", hours_ago=10)
    other = make_job(FAILED_TABLE, "Enroll", hours_ago=1)

    report = retry_jobs(store, class_="Sync", limit=2)

    assert [j.id for j in report.jobs] == [newest, middle]
    assert report.succeeded == 2
    assert report.failed == 0
    remaining = [r["id"] for r in _rows(store, FAILED_TABLE)]
    assert remaining == [oldest, other]
    report.raise_for_failures()


def test_bulk_retry_dry_run(seeded):
    before = statistics(seeded)
    report = retry_jobs(seeded, dry_run=True)
    assert len(report.jobs) == 1
    assert report.jobs[0].reason == "timeout"
    assert report.succeeded == 0
    assert statistics(seeded) == before


def test_bulk_retry_continues_past_failures(store, make_job):
    ids = [make_job(FAILED_TABLE, "Sync", hours_ago=h) for h in (3, 2, 1)]
    _block_delete(store, ids[1])

    report = retry_jobs(store, limit=10)

    assert report.succeeded == 2
    assert report.failed == 1
    assert len(report.errors) == 1
    assert f"job {ids[1]}" in report.errors[0]
    assert [r["id"] for r in _rows(store, FAILED_TABLE)] == [ids[1]]
    assert len(_rows(store, ACTIVE_TABLE)) == 2
    with pytest.raises(PartialFailure):
        report.raise_for_failures()


def test_bulk_retry_error_samples_are_capped(store, make_job):
    ids = [make_job(FAILED_TABLE, "Sync") for _ in range(12)]
    for job_id in ids:
        _block_delete(store, job_id)

    report = retry_jobs(store, limit=20)

    assert report.failed == 12
    assert len(report.errors) == 10
    assert report.errors_overflow == 2


def test_bulk_retry_rejects_bad_limit(store):
    with pytest.raises(InvalidArgument):
        retry_jobs(store, limit=0)


# ---------- Clear ----------
def test_clear_requires_a_filter(seeded):
    before = statistics(seeded)
    with pytest.raises(InvalidArgument):
        clear_jobs(seeded)
    with pytest.raises(InvalidArgument):
        clear_jobs(seeded, status="", class_=None, older_than="")
    assert statistics(seeded) == before


def test_clear_dry_run_matches_live_delete(seeded, make_job):
    make_job(FAILED_TABLE, "Enroll")
    preview = clear_jobs(seeded, status="failed", dry_run=True)
    assert statistics(seeded)["failed"] == 2

    live = clear_jobs(seeded, status="failed")
    assert preview.succeeded == live.succeeded == 2
    assert live.per_table == {seeded.table(FAILED_TABLE): 2}
    assert statistics(seeded)["failed"] == 0
    assert list_jobs(seeded, ["failed"]) == []


def test_clear_by_class_and_age(store, make_job):
    old = make_job(ACTIVE_TABLE, "Sync", hours_ago=30)
    recent = make_job(ACTIVE_TABLE, "Sync", hours_ago=1)
    other = make_job(ACTIVE_TABLE, "Enroll", hours_ago=30)

    report = clear_jobs(store, class_="Sync", older_than=24)

    assert report.succeeded == 1
    ids = [r["id"] for r in _rows(store, ACTIVE_TABLE)]
    assert old not in ids
    assert recent in ids and other in ids


def test_clear_is_idempotent(seeded):
    first = clear_jobs(seeded, class_="Sync")
    second = clear_jobs(seeded, class_="Sync")
    assert first.succeeded == 4
    assert second.succeeded == 0


def test_clear_pending_leaves_working(seeded):
    report = clear_jobs(seeded, status="pending")
    assert report.succeeded == 2
    stats = statistics(seeded)
    assert stats["pending"] == 0
    assert stats["working"] == 1
    assert stats["completed"] == 2


def test_clear_completed_alias(seeded):
    report = clear_jobs(seeded, status="completed", older_than="2d")
    assert report.succeeded == 0
    report = clear_jobs(seeded, status="completed", older_than="4h30m")
    assert report.succeeded == 1
    assert list(report.per_table) == [seeded.table(COMPLETED_TABLE)]


@pytest.mark.parametrize("age", ["0", "abc", "-3"])
def test_clear_rejects_bad_age(seeded, age):
    with pytest.raises(InvalidArgument):
        clear_jobs(seeded, older_than=age)


def test_clear_rejects_unknown_status(seeded):
    with pytest.raises(InvalidArgument):
        clear_jobs(seeded, status="dead")


def test_clear_skips_missing_table(seeded):
    seeded.conn.execute(f"DROP TABLE {seeded.table(COMPLETED_TABLE)}")
    report = clear_jobs(seeded, class_="Enroll")
    assert report.succeeded == 1
    assert report.failed == 0


def test_job_args_survive_retry_as_json(store, make_job):
    payload = {"user": {"id": 1, "roles": ["a", "b"]}}
    job_id = make_job(FAILED_TABLE, args=payload)
    new_id = retry_job(store, job_id)
    raw = store.conn.execute(
        f"SELECT args FROM {store.table(ACTIVE_TABLE)} WHERE id=?", (new_id,)
    ).fetchone()["args"]
    assert json.loads(raw) == payload
