import logging
import sqlite3
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from . import codec
from .db import connect_db, create_jobs_table
from .models import FREE, LOCKED, FAILED, JOB_STATES, JOB_IDENTITY_KEYS
from .utils import utc_now, to_iso, new_uuid, check_identifier

logger = logging.getLogger(__name__)


def _bind_types(params: Dict[str, Any], types: Iterable[str]) -> str:
    """Add :type0, :type1, ... to `params` and return the placeholder list."""
    if isinstance(types, str):
        types = [types]
    names = []
    for idx, job_type in enumerate(types):
        params[f"type{idx}"] = job_type
        names.append(f":type{idx}")
    return ", ".join(names)


class PipelineBackend:
    """
    Job queue over a single SQLite table.

    Rows move free -> locked (dequeue) -> deleted (complete) or failed (fail);
    reset puts a failed or locked row back to free. Claims rely on one
    conditional UPDATE per dequeue, so any number of processes may share the
    table.
    """

    def __init__(
        self,
        database: str,
        table_name: str = "cronq_jobs",
        *,
        timeout: float = 30.0,
        clock: Optional[Callable[[], datetime]] = None,
        create_table: bool = True,
    ):
        self.database = database
        self.timeout = timeout
        self.clock = clock or utc_now
        self._table_name = check_identifier(table_name)
        self.conn: Optional[sqlite3.Connection] = None
        self.reconnect()
        if create_table:
            self.create_table()

    # ---------- Connection ----------
    def reconnect(self):
        if self.conn is not None:
            self.conn.close()
        self.conn = None
        self.conn = connect_db(self.database, timeout=self.timeout)

    def close(self):
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    @property
    def table_name(self) -> str:
        return self._table_name

    @table_name.setter
    def table_name(self, name: str):
        self._table_name = check_identifier(name)

    def create_table(self):
        create_jobs_table(self.conn, self._table_name)

    # ---------- Records ----------
    def _load(self, row: sqlite3.Row) -> Dict[str, Any]:
        attributes = codec.decode(row["attributes"])
        attributes["id"] = row["uuid"]
        attributes["status"] = row["status"]
        attributes["class_name"] = row["class_name"]
        attributes["type"] = row["type"]
        return attributes

    def _stamp(self) -> str:
        return to_iso(self.clock())

    # ---------- Enqueue / find ----------
    def enqueue(self, attributes: Mapping[str, Any], ready_at: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Store a new free job and return it as loaded back from the table.
        `attributes` must carry 'class_name' and 'type'; `ready_at` holds the
        job back until that time.
        """
        for key in ("class_name", "type"):
            if not attributes.get(key):
                raise ValueError(f"job attributes must include {key!r}")

        job_id = new_uuid()
        self.conn.execute(
            f"""INSERT INTO {self._table_name}
               (uuid, created_at, run_from, status, class_name, type, attributes)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                job_id,
                self._stamp(),
                to_iso(ready_at) if ready_at is not None else None,
                FREE,
                str(attributes["class_name"]),
                str(attributes["type"]),
                codec.encode(codec.strip(attributes, JOB_IDENTITY_KEYS)),
            ),
        )
        logger.debug("Enqueued job %s (%s/%s)", job_id, attributes["class_name"], attributes["type"])
        return self.find(job_id)

    def find(self, job_id) -> Optional[Dict[str, Any]]:
        if job_id is None:
            return None
        row = self.conn.execute(
            f"SELECT * FROM {self._table_name} WHERE uuid=?", (job_id,)
        ).fetchone()
        return self._load(row) if row else None

    # ---------- Claim ----------
    def dequeue(
        self,
        only: Optional[Iterable[str]] = None,
        exclude: Optional[Iterable[str]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Claim the oldest runnable free job and return it, or None.

        `only` restricts the claim to the listed types, `exclude` skips them;
        the two cannot be combined.

        The claim is a single UPDATE whose WHERE clause re-checks eligibility
        on the chosen row, so concurrent callers can never take the same job.
        The claimed row is then read back by its fresh lock token, never by id.
        """
        if only is not None and exclude is not None:
            raise ValueError("Use either only or exclude, not both.")

        lock = new_uuid()
        now = self._stamp()
        params: Dict[str, Any] = {"lock_uuid": lock, "locked_at": now, "now": now}

        type_sql = ""
        if only is not None:
            placeholders = _bind_types(params, only)
            if not placeholders:
                return None
            type_sql = f"AND type IN ({placeholders})"
        elif exclude is not None:
            placeholders = _bind_types(params, exclude)
            if placeholders:
                type_sql = f"AND type NOT IN ({placeholders})"

        t = self._table_name
        updated = self.conn.execute(
            f"""UPDATE {t}
               SET lock_uuid=:lock_uuid, status='{LOCKED}', locked_at=:locked_at
               WHERE status='{FREE}' AND uuid = (
                   SELECT uuid FROM {t}
                   WHERE status='{FREE}' AND (run_from IS NULL OR run_from <= :now) {type_sql}
                   ORDER BY created_at ASC, rowid ASC
                   LIMIT 1
               )""",
            params,
        )
        if updated.rowcount != 1:
            return None

        row = self.conn.execute(
            f"SELECT * FROM {t} WHERE status='{LOCKED}' AND lock_uuid=?", (lock,)
        ).fetchone()
        if not row:
            return None
        logger.debug("Claimed job %s with lock %s", row["uuid"], lock)
        return self._load(row)

    # ---------- Outcomes ----------
    def complete(self, record: Mapping[str, Any]):
        """Delete a finished job. Records without an id are ignored."""
        if record.get("id") is None:
            return
        self.conn.execute(f"DELETE FROM {self._table_name} WHERE uuid=?", (record["id"],))

    def fail(self, record: Mapping[str, Any]):
        """Mark a job failed, keeping any attribute changes the caller made."""
        if record.get("id") is None:
            return
        self.conn.execute(
            f"""UPDATE {self._table_name}
               SET status=?, type=COALESCE(?, type), attributes=?
               WHERE uuid=?""",
            (FAILED, record.get("type"), codec.encode(codec.strip(record, JOB_IDENTITY_KEYS)), record["id"]),
        )

    def reset(self, record: Mapping[str, Any]):
        """Release a job back to free, dropping its lock."""
        if record.get("id") is None:
            return
        self.conn.execute(
            f"""UPDATE {self._table_name}
               SET status=?, lock_uuid=NULL, locked_at=NULL, type=COALESCE(?, type), attributes=?
               WHERE uuid=?""",
            (FREE, record.get("type"), codec.encode(codec.strip(record, JOB_IDENTITY_KEYS)), record["id"]),
        )

    def clear(self):
        cur = self.conn.execute(f"DELETE FROM {self._table_name}")
        logger.info("Cleared %d job(s) from %s", cur.rowcount, self._table_name)

    # ---------- Queries ----------
    def list_jobs(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        if status is not None and status not in JOB_STATES:
            raise ValueError(f"status must be one of: {', '.join(JOB_STATES)}")
        if status:
            rows = self.conn.execute(
                f"SELECT * FROM {self._table_name} WHERE status=? ORDER BY created_at ASC, rowid ASC",
                (status,),
            ).fetchall()
        else:
            rows = self.conn.execute(
                f"SELECT * FROM {self._table_name} ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
        return [self._load(r) for r in rows]

    def counts(self) -> Dict[str, int]:
        out = {s: 0 for s in JOB_STATES}
        for r in self.conn.execute(
            f"SELECT status, COUNT(1) AS c FROM {self._table_name} GROUP BY status"
        ).fetchall():
            out[r["status"]] = r["c"]
        return out
