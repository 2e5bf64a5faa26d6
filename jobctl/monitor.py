import logging
import signal
import threading
from typing import Callable, Dict, Optional

import click

from .db import JobStore
from .errors import InvalidArgument
from .models import ACTIVE_STATUSES, normalize_status
from .output import PREVIEW_HEADERS, jobs_table, stats_lines
from .repository import count_jobs, list_jobs, statistics
from .utils import now_ts

logger = logging.getLogger("jobctl.monitor")


def setup_signal_handlers(stop: threading.Event) -> dict:
    """Make SIGINT/SIGTERM set `stop`. Returns the handlers they replaced."""
    def _handler(signum, frame):
        logger.info("Received signal %s; stopping watcher", signum)
        stop.set()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[sig] = signal.signal(sig, _handler)
        except ValueError:
            # not in the main thread
            logger.debug("Cannot install handler for signal %s", sig)
    return previous


def restore_signal_handlers(previous: dict):
    for sig, handler in previous.items():
        if handler is not None:
            signal.signal(sig, handler)


def stats_changed(current: Dict[str, int], previous: Optional[Dict[str, int]]) -> bool:
    if previous is None:
        return True
    return any(current[k] != previous.get(k) for k in current)


def watch(
    store: JobStore,
    interval: int = 5,
    changes_only: bool = False,
    status: Optional[str] = None,
    class_: Optional[str] = None,
    stop: Optional[threading.Event] = None,
    max_ticks: Optional[int] = None,
    preview: int = 10,
    echo: Callable[[str], None] = click.echo,
) -> int:
    """
    Poll statistics every `interval` seconds until `stop` is set (or
    `max_ticks` ticks have run). Returns the number of ticks printed.
    A failing query ends the loop by propagating its error.
    """
    if interval < 1:
        raise InvalidArgument("interval must be >= 1 second")
    if preview < 1:
        raise InvalidArgument("preview must be >= 1")
    status = normalize_status(status)
    # the preview only ever shows active jobs
    statuses = [s for s in ACTIVE_STATUSES if status in (None, s)]
    stop = stop or threading.Event()

    last_stats = None
    ticks = printed = 0

    while not stop.is_set():
        current = statistics(store)
        ticks += 1

        if not changes_only or stats_changed(current, last_stats):
            if printed:
                echo("")
            echo(f"=== Update at {now_ts()} ===")
            for line in stats_lines(current, last_stats):
                echo(line)

            matching = count_jobs(store, statuses, class_) if statuses else 0
            if matching:
                jobs = list_jobs(store, statuses, class_, limit=preview)[:preview]
                echo("")
                echo("=== Active Jobs ===")
                echo(jobs_table(jobs, PREVIEW_HEADERS))
                if matching > len(jobs):
                    echo(f"... and {matching - len(jobs)} more")
            printed += 1
        else:
            logger.debug("Tick %d: no change", ticks)

        last_stats = current

        if max_ticks is not None and ticks >= max_ticks:
            break
        stop.wait(interval)

    return printed
