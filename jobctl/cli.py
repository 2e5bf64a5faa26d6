import json
import logging
import threading

import click

from .db import connect_db, init_db
from .errors import JobctlError, PartialFailure
from .models import STATUSES, STATUS_ALIASES, normalize_status
from .monitor import restore_signal_handlers, setup_signal_handlers, watch
from .output import job_detail_lines, jobs_csv, jobs_table, stats_lines, status_json
from .controllers import clear_jobs, retry_job, retry_jobs
from .repository import get_config, get_int_setting, get_job, list_jobs, set_config, statistics

STATUS_CHOICE = click.Choice(list(STATUSES) + list(STATUS_ALIASES), case_sensitive=False)
TABLE_CHOICE = click.Choice(["jobs", "completed", "failed"], case_sensitive=False)


def fail(e):
    click.secho(f"Error: {e}", fg="red")
    raise SystemExit(1)


def open_store(ctx):
    return ctx.obj["store"]


@click.group(help="jobctl: job queue inspection and maintenance")
@click.option("--db", envvar="JOBCTL_DB", default=None, help="SQLite file holding the job tables")
@click.option("--prefix", envvar="JOBCTL_PREFIX", default=None, help="Table name prefix")
@click.option("-v", "--verbose", count=True, help="-v for info logs, -vv for debug")
@click.pass_context
def cli(ctx, db, prefix, verbose):
    level = logging.WARNING if not verbose else (logging.INFO if verbose == 1 else logging.DEBUG)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    ctx.ensure_object(dict)
    # Ensure DB/schema exist before any command runs
    try:
        store = connect_db(db, prefix)
        ctx.call_on_close(store.close)
        init_db(store)
    except JobctlError as e:
        fail(e)
    ctx.obj["store"] = store


# ---------- Status ----------
@cli.command("status", help="Show job queue statistics and matching jobs")
@click.option("--status", "status", type=STATUS_CHOICE, default=None, help="Filter by job status")
@click.option("--class", "class_", default=None, help="Filter by exact job class")
@click.option("--format", "fmt", type=click.Choice(["table", "csv", "json"]), default="table",
              show_default=True)
@click.option("--limit", type=int, default=None, help="Rows per table (default: config list_limit)")
@click.pass_context
def status_cmd(ctx, status, class_, fmt, limit):
    store = open_store(ctx)
    try:
        status = normalize_status(status)
        limit = limit if limit is not None else get_int_setting(store, "list_limit")
        stats = statistics(store)
        jobs = list_jobs(store, [status] if status else None, class_, limit=limit)
    except JobctlError as e:
        fail(e)

    if fmt == "json":
        click.echo(status_json(stats, jobs))
        return
    click.echo("=== Job Queue Statistics ===")
    for line in stats_lines(stats):
        click.echo(line)
    click.echo("")
    if not jobs:
        click.echo("No jobs found matching criteria.")
        return
    click.echo(jobs_csv(jobs) if fmt == "csv" else jobs_table(jobs))


# ---------- Watch ----------
@cli.command("watch", help="Watch job statistics in real time")
@click.option("--interval", type=int, default=None, help="Refresh interval in seconds (default: config)")
@click.option("--changes-only", is_flag=True, help="Only print when statistics change")
@click.option("--status", "status", type=STATUS_CHOICE, default=None, help="Filter listed jobs by status")
@click.option("--class", "class_", default=None, help="Filter listed jobs by class")
@click.pass_context
def watch_cmd(ctx, interval, changes_only, status, class_):
    store = open_store(ctx)
    try:
        if interval is None:
            interval = get_int_setting(store, "watch_interval")
        preview = get_int_setting(store, "watch_preview")
    except JobctlError as e:
        fail(e)
    if interval < 1:
        fail(f"--interval must be >= 1 (got {interval})")

    stop = threading.Event()
    previous = setup_signal_handlers(stop)

    click.echo("=== Job Queue Watcher ===")
    click.echo(f"Watching job status every {interval} seconds...")
    click.secho("Press Ctrl+C to stop", fg="cyan")
    click.echo("")
    try:
        watch(store, interval=interval, changes_only=changes_only, status=status,
              class_=class_, stop=stop, preview=preview)
    except JobctlError as e:
        fail(e)
    finally:
        restore_signal_handlers(previous)
    click.secho("Watcher stopped.", fg="yellow")


# ---------- Inspect ----------
@cli.command("inspect", help="Show every field of one job, including its decoded args")
@click.argument("job_id", type=int)
@click.option("--table", type=TABLE_CHOICE, default="jobs", show_default=True,
              help="Which table to look in")
@click.pass_context
def inspect_cmd(ctx, job_id, table):
    store = open_store(ctx)
    try:
        job = get_job(store, job_id, table)
    except JobctlError as e:
        fail(e)
    for line in job_detail_lines(job):
        click.echo(line)


# ---------- Clear ----------
@cli.command("clear", help="Delete jobs matching the given filters (at least one required)")
@click.option("--status", "status", type=STATUS_CHOICE, default=None)
@click.option("--class", "class_", default=None)
@click.option("--older-than", default=None, help="Age in hours, or e.g. 36h, 2d, 1d12h")
@click.option("--dry-run", is_flag=True, help="Show what would be deleted without deleting")
@click.pass_context
def clear_cmd(ctx, status, class_, older_than, dry_run):
    store = open_store(ctx)
    try:
        report = clear_jobs(store, status=status, class_=class_, older_than=older_than, dry_run=dry_run)
    except JobctlError as e:
        fail(e)

    for table, n in report.per_table.items():
        if n:
            verb = "would be cleared" if dry_run else "deleted"
            click.echo(f"Table {table}: {n} jobs {verb}")
    _print_errors(report)
    if dry_run:
        click.echo(f"DRY RUN: Would delete {report.succeeded} jobs total")
    else:
        click.secho(f"Deleted {report.succeeded} jobs from queue", fg="green")
    _exit_on_partial(report)


# ---------- Retry ----------
@cli.command("retry", help="Move failed jobs back into the active queue")
@click.argument("job_id", type=int, required=False)
@click.option("--class", "class_", default=None, help="Retry jobs of this class only")
@click.option("--limit", type=int, default=None, help="Maximum jobs to retry (default: config retry_limit)")
@click.option("--dry-run", is_flag=True, help="Show what would be retried without retrying")
@click.pass_context
def retry_cmd(ctx, job_id, class_, limit, dry_run):
    store = open_store(ctx)
    try:
        if job_id is not None:
            job = get_job(store, job_id, "failed")
            click.echo(f"Retrying job {job.id}: {job.class_} - {job.reason or 'N/A'}")
            new_id = retry_job(store, job_id, dry_run=dry_run)
            if dry_run:
                click.echo(f"DRY RUN: Would retry job {job_id}")
            else:
                click.secho(f"Retried job {job_id} (new active job {new_id})", fg="green")
            return

        if limit is None:
            limit = get_int_setting(store, "retry_limit")
        report = retry_jobs(store, class_=class_, limit=limit, dry_run=dry_run)
    except JobctlError as e:
        fail(e)

    if not report.jobs:
        click.echo("No failed jobs found matching criteria")
        return
    click.echo(f"Found {len(report.jobs)} failed jobs to retry")
    for job in report.jobs:
        click.echo(f"Job {job.id}: {job.class_} - {job.reason or 'N/A'}")
    _print_errors(report)
    if dry_run:
        click.echo(f"DRY RUN: Would retry {len(report.jobs)} jobs")
    else:
        click.secho(f"Retried {report.succeeded} jobs", fg="green")
    _exit_on_partial(report)


def _print_errors(report):
    for msg in report.errors:
        click.secho(f"  ! {msg}", fg="red")
    if report.errors_overflow:
        click.secho(f"  ... and {report.errors_overflow} more errors", fg="red")


def _exit_on_partial(report):
    try:
        report.raise_for_failures()
    except PartialFailure as e:
        fail(e)


# ---------- Config ----------
@cli.group("config", help="Configuration")
def config_group():
    pass


@config_group.command("get")
@click.pass_context
def config_get(ctx):
    store = open_store(ctx)
    try:
        click.echo(json.dumps(get_config(store), indent=2))
    except JobctlError as e:
        fail(e)


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set_cmd(ctx, key, value):
    store = open_store(ctx)
    try:
        set_config(store, key, value)
        click.secho(f"Config updated: {key}={value}", fg="green")
    except JobctlError as e:
        fail(e)


def main():
    cli()
