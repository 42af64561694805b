"""Turns closed timer records into time entries. Pure, nothing in here touches the network or the disk."""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from tt.common.logger import log
from tt.core.timer_state import DEFAULT_DESCRIPTION, extract_id, parse_iso, utc_now


@dataclass
class TimeEntry:
    id: str
    user_id: str | None
    project_id: str | None
    task_id: str | None
    date: date
    duration: int
    description: str
    created_at: datetime
    start_time: datetime | None = field(default=None, compare=False)
    end_time: datetime | None = field(default=None, compare=False)

    @property
    def hours(self):
        return self.duration / 60


# Billable minutes between start and end, minus paused time. Rounds half up like the API does so both sides agree
# on the minute count. A negative result means the inputs were inconsistent; it's clamped to 0 and logged.
def compute_duration_minutes(start, end, total_paused_ms=0):
    span_ms = (end - start).total_seconds() * 1000 - (total_paused_ms or 0)
    minutes = math.floor(span_ms / 60000 + 0.5)
    if minutes < 0:
        log.warning(f"Computed negative duration ({minutes} min) for start={start.isoformat()} end={end.isoformat()} "
                    f"paused={total_paused_ms}ms, clamping to 0")
        return 0
    return minutes

# Builds a TimeEntry out of a closed timer record as returned by the API (stop, log, or the user listing).
# With prefer_recorded the record's stored duration wins over the one derived from its times, which is what a
# listing needs since entries can have their duration edited by hand afterwards.
def materialize(record, user_id=None, prefer_recorded=False):
    start = parse_iso(record.get("startTime"))
    end = parse_iso(record.get("endTime"))

    if prefer_recorded and record.get("duration") is not None:
        duration = max(0, int(record["duration"]))
    elif start is not None and end is not None:
        duration = compute_duration_minutes(start, end, record.get("totalPausedTime") or 0)
    elif record.get("duration") is not None:
        duration = max(0, int(record["duration"]))
    else:
        duration = 0

    created_at = parse_iso(record.get("createdAt")) or start or utc_now()
    return TimeEntry(
        id=extract_id(record.get("_id") or record.get("id")) or "",
        user_id=extract_id(record.get("user")) or user_id,
        project_id=extract_id(record.get("project")),
        task_id=extract_id(record.get("task")),
        date=(start or created_at).date(),
        duration=duration,
        description=(record.get("description") or "").strip() or DEFAULT_DESCRIPTION,
        created_at=created_at,
        start_time=start,
        end_time=end,
    )

# Start/end of a manual entry logged as "N minutes on day D". The entry is placed at start_hour UTC that day.
def manual_window(day, minutes, start_hour=9):
    start = datetime.combine(day, time(hour=start_hour), tzinfo=timezone.utc)
    return start, start + timedelta(minutes=minutes)
