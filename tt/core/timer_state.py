import re
from datetime import datetime, timezone
from enum import Enum
from tt.common.logger import log
from tt.core.errors import InvalidIdentifierError

DEFAULT_DESCRIPTION = "Timer session"

_OBJECT_ID = re.compile(r"^[a-fA-F0-9]{24}$")

#region === Helpers ===

# Current wall-clock time, always tz-aware UTC.
def utc_now():
    return datetime.now(timezone.utc)

# Parses an ISO8601 string coming from the API or the cache. Accepts a trailing "Z", and naive values are read as UTC.
def parse_iso(value):
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

def to_iso(dt):
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

# The list endpoint populates project/task into full documents, everything else sends bare ids.
def extract_id(value):
    if isinstance(value, dict):
        value = value.get("_id") or value.get("id")
    return None if value is None else str(value)

# Raises InvalidIdentifierError unless value is a 24 char hex reference. Returns the id so calls can be inlined.
def validate_object_id(value, label="id"):
    if not isinstance(value, str) or not _OBJECT_ID.match(value):
        raise InvalidIdentifierError(label, value)
    return value

def _clean_description(description):
    description = (description or "").strip()
    return description or DEFAULT_DESCRIPTION

#endregion === Helpers ===


class TimerStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


# The one in-flight timer for a user. Start time always comes from the server, pause bookkeeping is kept in
# milliseconds to match what the API stores in totalPausedTime.
class ActiveTimer:

    def __init__(self, user_id, project_id, task_id, start_time, description=None, is_paused=False,
                 paused_at=None, total_paused_ms=0, timer_id=None):
        self.user_id = user_id
        self.project_id = project_id
        self.task_id = task_id
        self.start_time = parse_iso(start_time)
        self.description = _clean_description(description)
        self.is_paused = bool(is_paused)
        self.paused_at = parse_iso(paused_at) if self.is_paused else None
        self.total_paused_ms = int(total_paused_ms or 0)
        self.timer_id = timer_id

    @property
    def status(self):
        return TimerStatus.PAUSED if self.is_paused else TimerStatus.RUNNING

    def pause(self, now):
        if self.is_paused:
            return
        self.is_paused = True
        self.paused_at = now
        log.debug(f"Paused timer for task '{self.task_id}' at {to_iso(now)}")

    def resume(self, now):
        if not self.is_paused:
            return
        if self.paused_at is not None:
            self.total_paused_ms += max(0, int((now - self.paused_at).total_seconds() * 1000))
        self.is_paused = False
        self.paused_at = None
        log.debug(f"Resumed timer for task '{self.task_id}', total paused now {self.total_paused_ms}ms")

    # Seconds of billable time so far. While paused the clock is frozen at the pause instant.
    def elapsed(self, now):
        end = self.paused_at if self.is_paused and self.paused_at is not None else now
        seconds = (end - self.start_time).total_seconds() - self.total_paused_ms / 1000
        return max(0.0, seconds)

    def same_target(self, other):
        return (other is not None
                and self.project_id == other.project_id
                and self.task_id == other.task_id)

    def to_cache(self):
        return {
            "taskId": self.task_id,
            "projectId": self.project_id,
            "startTime": to_iso(self.start_time),
            "description": self.description,
            "isPaused": self.is_paused,
            "pausedAt": to_iso(self.paused_at),
            "totalPausedTime": self.total_paused_ms,
        }

    # Cache records written before pause state was persisted just restore as running. A paused record without its
    # pause instant can't ever account paused time, so it's rejected like a record with bad ids.
    @classmethod
    def from_cache(cls, user_id, record):
        if record.get("isPaused") and not record.get("pausedAt"):
            raise ValueError("cached timer is paused but has no pausedAt")
        return cls(
            user_id=user_id,
            project_id=validate_object_id(record["projectId"], "projectId"),
            task_id=validate_object_id(record["taskId"], "taskId"),
            start_time=record["startTime"],
            description=record.get("description"),
            is_paused=record.get("isPaused", False),
            paused_at=record.get("pausedAt"),
            total_paused_ms=record.get("totalPausedTime", 0),
        )

    # Project and task come back null from the listing once they've been deleted. Such a timer can never be stopped
    # through the API, so it's rejected here instead of becoming the active one.
    @classmethod
    def from_remote(cls, user_id, record):
        return cls(
            user_id=extract_id(record.get("user")) or user_id,
            project_id=validate_object_id(extract_id(record.get("project")), "projectId"),
            task_id=validate_object_id(extract_id(record.get("task")), "taskId"),
            start_time=record["startTime"],
            description=record.get("description"),
            is_paused=record.get("isPaused", False),
            paused_at=record.get("pausedAt"),
            total_paused_ms=record.get("totalPausedTime", 0),
            timer_id=extract_id(record.get("_id") or record.get("id")),
        )

    def __eq__(self, other):
        if not isinstance(other, ActiveTimer):
            return NotImplemented
        return self.to_cache() == other.to_cache() and self.user_id == other.user_id

    def __repr__(self):
        return (f"ActiveTimer(task={self.task_id!r}, project={self.project_id!r}, "
                f"start={to_iso(self.start_time)!r}, status={self.status.value!r})")
