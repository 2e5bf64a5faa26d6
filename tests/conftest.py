"""
Pytest fixtures for jobctl.

Every test gets its own SQLite file under tmp_path with the three job
tables and the config table created.
"""
import json

import pytest

from jobctl.db import connect_db, init_db, insert_job
from jobctl.models import ACTIVE_TABLE, COMPLETED_TABLE, FAILED_TABLE
from jobctl.utils import ts_seconds_ago

PREFIX = "mcdir_"

TABLE_DEFAULT_STATUS = {
    ACTIVE_TABLE: "pending",
    COMPLETED_TABLE: "complete",
    FAILED_TABLE: "failed",
}


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "queue.db")


@pytest.fixture
def store(db_path):
    s = connect_db(db_path, PREFIX)
    init_db(s)
    yield s
    s.close()


def add_job(store, table, class_="Sync", hours_ago=0.0, args=None, **fields):
    """Insert a job as a producer would; returns the new id."""
    fields.setdefault("status", TABLE_DEFAULT_STATUS[table])
    if args is not None and not isinstance(args, str):
        args = json.dumps(args)
    return insert_job(
        store,
        table,
        class_=class_,
        args=args,
        created_at=ts_seconds_ago(int(hours_ago * 3600)),
        **fields,
    )


@pytest.fixture
def seeded(store):
    """3 active (2 pending, 1 working), 2 completed, 1 failed."""
    add_job(store, ACTIVE_TABLE, "Sync", hours_ago=3)
    add_job(store, ACTIVE_TABLE, "Enroll", hours_ago=2)
    add_job(store, ACTIVE_TABLE, "Sync", hours_ago=1, status="working", tries=1)
    add_job(store, COMPLETED_TABLE, "Sync", hours_ago=5)
    add_job(store, COMPLETED_TABLE, "Enroll", hours_ago=4)
    add_job(store, FAILED_TABLE, "Sync", hours_ago=6, reason="timeout", tries=3)
    return store


@pytest.fixture
def make_job(store):
    def _make(table, class_="Sync", hours_ago=0.0, args=None, **fields):
        return add_job(store, table, class_, hours_ago, args, **fields)
    return _make


@pytest.fixture
def job_factory():
    """`add_job` for tests that open their own store."""
    return add_job
