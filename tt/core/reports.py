import csv
from collections import defaultdict
from datetime import datetime, timezone
from tt.common.logger import log
from tt.common.setup import PATHS

CSV_HEADER = ["Date", "Project", "Task", "Description", "Duration (minutes)", "Duration (hours)"]

# Entry days are UTC, so aware datetime bounds are moved to UTC before taking their day.
def _as_day(value):
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value

# Narrows a list of time entries. Every filter is optional, since/until are inclusive calendar days (datetimes count
# by their day).
def filter_entries(entries, user_id=None, project_id=None, task_id=None, since=None, until=None):
    since, until = _as_day(since), _as_day(until)
    result = []
    for entry in entries:
        if user_id is not None and entry.user_id != user_id:
            continue
        if project_id is not None and entry.project_id != project_id:
            continue
        if task_id is not None and entry.task_id != task_id:
            continue
        if since is not None and entry.date < since:
            continue
        if until is not None and entry.date > until:
            continue
        result.append(entry)
    return result

def total_minutes(entries):
    return sum(entry.duration for entry in entries)

def _hours_by(entries, key):
    minutes = defaultdict(int)
    for entry in entries:
        minutes[key(entry)] += entry.duration
    return {k: round(v / 60, 2) for k, v in minutes.items()}

def hours_by_task(entries):
    return _hours_by(entries, lambda e: e.task_id)

def hours_by_project(entries):
    return _hours_by(entries, lambda e: e.project_id)

# Writes entries out as CSV, newest first, and returns the path written. Names map ids to something readable when
# given, unknown ids are written as is.
def export_csv(entries, path=None, project_names=None, task_names=None):
    project_names = project_names or {}
    task_names = task_names or {}
    if path is None:
        path = PATHS.exports / f"time_entries_{datetime.now():%Y%m%d_%H%M%S}.csv"

    rows = sorted(entries, key=lambda e: (e.date, e.created_at), reverse=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_HEADER)
        for entry in rows:
            writer.writerow([
                entry.date.isoformat(),
                project_names.get(entry.project_id, entry.project_id or ""),
                task_names.get(entry.task_id, entry.task_id or ""),
                entry.description,
                entry.duration,
                f"{entry.duration / 60:.2f}",
            ])
    log.info(f"Exported {len(rows)} time entries to '{path}'")
    return path
