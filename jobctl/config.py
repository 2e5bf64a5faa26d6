import os

DB_FILE = os.environ.get("JOBCTL_DB", "queue.db")
TABLE_PREFIX = os.environ.get("JOBCTL_PREFIX", "mcdir_")

DEFAULT_CONFIG = {
    "list_limit": "100",      # rows per table in listings
    "watch_interval": "5",    # seconds between watch ticks
    "watch_preview": "10",    # active jobs shown per watch tick
    "retry_limit": "10",      # failed jobs per bulk retry
}

ALLOWED_CONFIG_KEYS = set(DEFAULT_CONFIG.keys())
