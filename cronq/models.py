from dataclasses import dataclass, field
from typing import Any, Dict, Optional

# Job states
FREE = "free"
LOCKED = "locked"
FAILED = "failed"

JOB_STATES = (FREE, LOCKED, FAILED)

# Keys kept in dedicated columns, never inside the attribute blob
JOB_IDENTITY_KEYS = ("id", "status", "class_name", "type")
ENTRY_IDENTITY_KEYS = ("id", "class_name")

# Cron field -> (column, min, max)
CRON_FIELDS = {
    "minute": ("minute", 0, 59),
    "hour": ("hour", 0, 23),
    "day_of_month": ("monthday", 1, 31),
    "month": ("month", 1, 12),
    "day_of_week": ("weekday", 0, 6),   # 0 = Sunday
}


@dataclass
class ScheduleEntry:
    id: str
    job: Dict[str, Any] = field(default_factory=dict)
    minute: Optional[int] = None
    hour: Optional[int] = None
    day_of_month: Optional[int] = None
    month: Optional[int] = None
    day_of_week: Optional[int] = None

    def cron(self) -> Dict[str, Optional[int]]:
        return {name: getattr(self, name) for name in CRON_FIELDS}
