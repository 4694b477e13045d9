import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional

from . import codec
from .db import connect_db, create_schedule_table
from .models import CRON_FIELDS, ENTRY_IDENTITY_KEYS, ScheduleEntry
from .utils import now_iso, tick_stamp, cron_values, new_uuid, check_identifier

logger = logging.getLogger(__name__)

CRON_COLUMNS = [column for column, _, _ in CRON_FIELDS.values()]

# Every cron column either is a wildcard (NULL) or equals the instant's value
MATCH_SQL = " AND ".join(f"({c} IS NULL OR {c} = :{c})" for c in CRON_COLUMNS)


def _int_or_none(value) -> Optional[int]:
    return int(value) if value is not None else None


class SchedulerBackend:
    """
    Recurring job templates with cron-style trigger fields.

    Each of minute, hour, day of month, month and day of week holds either an
    exact value or NULL for "any". A driver calls get_jobs_for() once a minute;
    claiming stamps matched rows with the minute so a second call for the same
    minute, from this process or any other, gets nothing back.
    """

    def __init__(
        self,
        database: str,
        table_name: str = "cronq_scheduled_jobs",
        *,
        timeout: float = 30.0,
        create_table: bool = True,
    ):
        self.database = database
        self.timeout = timeout
        self._table_name = check_identifier(table_name)
        self.conn: Optional[sqlite3.Connection] = None
        self.reconnect()
        if create_table:
            self.create_table()

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
        create_schedule_table(self.conn, self._table_name)

    def _load(self, row: sqlite3.Row) -> ScheduleEntry:
        job = codec.decode(row["attributes"])
        job["id"] = row["uuid"]
        job["class_name"] = row["class_name"]
        return ScheduleEntry(
            id=row["uuid"],
            job=job,
            minute=_int_or_none(row["minute"]),
            hour=_int_or_none(row["hour"]),
            day_of_month=_int_or_none(row["monthday"]),
            month=_int_or_none(row["month"]),
            day_of_week=_int_or_none(row["weekday"]),
        )

    def clear(self):
        cur = self.conn.execute(f"DELETE FROM {self._table_name}")
        logger.info("Cleared %d schedule entr(ies) from %s", cur.rowcount, self._table_name)

    def schedule(
        self,
        job: Mapping[str, Any],
        minute: Optional[int] = None,
        hour: Optional[int] = None,
        day_of_month: Optional[int] = None,
        month: Optional[int] = None,
        day_of_week: Optional[int] = None,
    ) -> ScheduleEntry:
        """Store a recurring job template. A field left as None matches any value."""
        if not job.get("class_name"):
            raise ValueError("job attributes must include 'class_name'")

        given = {
            "minute": minute,
            "hour": hour,
            "day_of_month": day_of_month,
            "month": month,
            "day_of_week": day_of_week,
        }
        columns = {}
        for name, value in given.items():
            column, lo, hi = CRON_FIELDS[name]
            if value is not None:
                if isinstance(value, bool) or not isinstance(value, int):
                    raise ValueError(f"{name} must be an integer or None, got {value!r}")
                if not lo <= value <= hi:
                    raise ValueError(f"{name} must be between {lo} and {hi}, got {value}")
            columns[column] = value

        entry_id = new_uuid()
        self.conn.execute(
            f"""INSERT INTO {self._table_name}
               (uuid, created_at, class_name, attributes, minute, hour, monthday, month, weekday)
               VALUES (:uuid, :created_at, :class_name, :attributes, :minute, :hour, :monthday, :month, :weekday)""",
            {
                "uuid": entry_id,
                "created_at": now_iso(),
                "class_name": str(job["class_name"]),
                "attributes": codec.encode(codec.strip(job, ENTRY_IDENTITY_KEYS)),
                **columns,
            },
        )
        logger.debug("Scheduled %s (%s) at %s", entry_id, job["class_name"], columns)
        return self.find(entry_id)

    def find(self, entry_id) -> Optional[ScheduleEntry]:
        if entry_id is None:
            return None
        row = self.conn.execute(
            f"SELECT * FROM {self._table_name} WHERE uuid=?", (entry_id,)
        ).fetchone()
        return self._load(row) if row else None

    def get_jobs_for(self, instant: datetime, claim: bool = True) -> List[Dict[str, Any]]:
        """
        Job templates due at `instant`, in the order they were scheduled.

        With claim=True every due row is stamped with the minute of `instant`
        and a fresh lock token in one UPDATE, and only rows carrying that token
        are returned; rows already stamped with this minute are not due again.
        With claim=False the same match is a plain read that leaves no trace.
        """
        params: Dict[str, Any] = dict(cron_values(instant))
        t = self._table_name

        if claim:
            lock = new_uuid()
            params["lock_uuid"] = lock
            params["locked_at"] = tick_stamp(instant)
            cur = self.conn.execute(
                f"""UPDATE {t}
                   SET lock_uuid=:lock_uuid, locked_at=:locked_at
                   WHERE (locked_at IS NULL OR locked_at < :locked_at) AND {MATCH_SQL}""",
                params,
            )
            if cur.rowcount == 0:
                return []
            logger.debug("Claimed %d schedule entr(ies) for %s", cur.rowcount, params["locked_at"])
            rows = self.conn.execute(
                f"SELECT * FROM {t} WHERE lock_uuid=? ORDER BY id ASC", (lock,)
            ).fetchall()
        else:
            rows = self.conn.execute(
                f"SELECT * FROM {t} WHERE {MATCH_SQL} ORDER BY id ASC", params
            ).fetchall()

        return [self._load(r).job for r in rows]

    def delete(self, entry_id):
        """Unschedule an entry. Unknown ids are ignored."""
        if entry_id is None:
            return
        self.conn.execute(f"DELETE FROM {self._table_name} WHERE uuid=?", (entry_id,))

    def all_entries(self) -> Iterator[ScheduleEntry]:
        """Lazily walk every entry in insertion order. The iterator can be consumed once."""
        cur = self.conn.execute(f"SELECT * FROM {self._table_name} ORDER BY id ASC")
        for row in cur:
            yield self._load(row)
