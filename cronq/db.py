import sqlite3

from .utils import check_identifier

JOBS_SCHEMA = """
CREATE TABLE IF NOT EXISTS {table} (
    uuid TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    run_from TEXT,
    locked_at TEXT,
    lock_uuid TEXT UNIQUE,
    status TEXT NOT NULL,
    class_name TEXT NOT NULL,
    type TEXT NOT NULL,
    attributes TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_{table}_status_run ON {table}(status, run_from, created_at);
"""

SCHEDULE_SCHEMA = """
CREATE TABLE IF NOT EXISTS {table} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL,
    locked_at TEXT,
    lock_uuid TEXT,
    class_name TEXT NOT NULL,
    attributes TEXT NOT NULL,
    minute INTEGER,
    hour INTEGER,
    monthday INTEGER,
    month INTEGER,
    weekday INTEGER
);
CREATE INDEX IF NOT EXISTS idx_{table}_lock ON {table}(lock_uuid);
"""


def connect_db(database: str, timeout: float = 30.0) -> sqlite3.Connection:
    """
    Open a connection in autocommit mode: every statement is its own
    transaction. Safe to hand to another thread, one user at a time.
    """
    conn = sqlite3.connect(
        database,
        timeout=timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    if database != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(f"PRAGMA busy_timeout={int(timeout * 1000)}")
    return conn


def create_jobs_table(conn: sqlite3.Connection, table: str):
    conn.executescript(JOBS_SCHEMA.format(table=check_identifier(table)))


def create_schedule_table(conn: sqlite3.Connection, table: str):
    conn.executescript(SCHEDULE_SCHEMA.format(table=check_identifier(table)))


def init_db(database: str, jobs_table: str, schedule_table: str, timeout: float = 30.0):
    conn = connect_db(database, timeout=timeout)
    try:
        create_jobs_table(conn, jobs_table)
        create_schedule_table(conn, schedule_table)
    finally:
        conn.close()
