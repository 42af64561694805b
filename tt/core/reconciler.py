"""Timer reconciliation core.

Owns the single active timer for one user session and drives it through
``idle -> running <-> paused -> idle`` against the timer API. The remote is
the source of truth: the on-disk cache only ever mirrors state the remote has
confirmed, and on startup :meth:`TimerReconciler.recover` lets the remote
overwrite whatever the cache restored.

Every public action returns an :class:`~tt.core.errors.ActionResult` instead
of raising, and a failed action leaves the state exactly as it was.
"""

import dataclasses
from datetime import date as date_cls, datetime
import threading
import uuid
from tt.common.logger import log
from tt.core.cache import TimerCache
from tt.core.errors import ActionResult, ManualLogError, PreconditionError, RemoteError, TimerError
from tt.core.materializer import manual_window, materialize
from tt.core.timer_state import (
    ActiveTimer,
    TimerStatus,
    parse_iso,
    to_iso,
    utc_now,
    validate_object_id,
)


class TimerReconciler:

    def __init__(self, user_id, remote, cache=None, ticker=None, clock=utc_now,
                 manual_description="Manual time entry", manual_start_hour=9):
        self.user_id = validate_object_id(user_id, "userId")
        self.remote = remote
        self.cache = cache or TimerCache()
        if ticker is None:
            from tt.core.ticker import ElapsedTicker
            ticker = ElapsedTicker(clock=clock)
        self.ticker = ticker
        self.clock = clock
        self.manual_description = manual_description
        self.manual_start_hour = manual_start_hour

        self._lock = threading.Lock()
        self._active = None
        self._entries = []

    #region === Read accessors ===

    @property
    def status(self):
        return TimerStatus.IDLE if self._active is None else self._active.status

    @property
    def active(self):
        return self._active

    @property
    def entries(self):
        return list(self._entries)

    def elapsed(self):
        return 0.0 if self._active is None else self._active.elapsed(self.clock())

    #endregion === Read accessors ===

    #region === Internals ===

    def _ok(self, entry=None):
        return ActionResult(ok=True, state=self.status, entry=entry)

    def _failed(self, action, error):
        if isinstance(error, RemoteError):
            log.error(f"{action} failed at the remote, state left at '{self.status.value}': {error}", exc_info=error)
        else:
            log.warning(f"{action} rejected, state left at '{self.status.value}': {error}")
        return ActionResult(ok=False, state=self.status, error=error)

    # The cache is only a recovery hint, so failing to write it never undoes a transition the remote confirmed.
    def _write_cache(self, timer):
        try:
            self.cache.write(timer)
        except OSError:
            log.warning("Could not write the timer cache, recovery will rely on the remote alone.", exc_info=True)

    def _clear_cache(self):
        try:
            self.cache.clear()
        except OSError:
            log.warning("Could not clear the timer cache, next recovery will discard it.", exc_info=True)

    def _show(self, timer):
        if timer.is_paused:
            self.ticker.hold(timer)
        else:
            self.ticker.start(timer)

    def _drop_local(self):
        self.ticker.stop()
        self._clear_cache()
        self._active = None

    def _require_target(self, task_id, project_id, action):
        if not task_id or not project_id:
            raise PreconditionError(f"Select a project and a task before you {action}.")
        validate_object_id(project_id, "projectId")
        validate_object_id(task_id, "taskId")

    @staticmethod
    def _start_time_of(record):
        try:
            start_time = parse_iso(record.get("startTime"))
        except (TypeError, ValueError) as e:
            raise RemoteError(f"Timer API returned an unreadable startTime: {record.get('startTime')!r}") from e
        if start_time is None:
            raise RemoteError("Timer API response has no startTime")
        return start_time

    # Fills anything the remote left out of a closed record with what we know locally, remote values win.
    def _closed_record(self, record, timer, now, description):
        paused_ms = timer.total_paused_ms
        if timer.is_paused and timer.paused_at is not None:
            paused_ms += max(0, int((now - timer.paused_at).total_seconds() * 1000))
        base = {
            "_id": timer.timer_id,
            "user": timer.user_id,
            "project": timer.project_id,
            "task": timer.task_id,
            "startTime": to_iso(timer.start_time),
            "endTime": to_iso(now),
            "description": description or timer.description,
        }
        merged = {**base, **{k: v for k, v in record.items() if v is not None}}
        # Stopping while paused: the API doesn't fold the open pause into totalPausedTime, we do.
        merged["totalPausedTime"] = max(int(record.get("totalPausedTime") or 0), paused_ms)
        return merged

    def _closed_entries(self, timers):
        entries = [materialize(t, self.user_id, prefer_recorded=True) for t in timers if t.get("endTime")]
        entries.sort(key=lambda e: e.start_time or e.created_at, reverse=True)
        return entries

    #endregion === Internals ===

    #region === Recovery ===

    # Startup reconciliation, both halves in one go: restore the cached timer straight away so the display doesn't
    # flash empty, then let the remote's listing overwrite it. If the listing fails the cached state is kept as is.
    # Safe to run any number of times. The window runs the two halves separately so the listing stays off the GUI
    # thread.
    def recover(self):
        self.restore_cached()
        try:
            timers = self.remote.list_for_user(self.user_id)
        except TimerError as e:
            return self.listing_failed(e)
        return self.apply_listing(timers)

    # First half: optimistic restore from the cache, no network involved.
    def restore_cached(self):
        with self._lock:
            record = self.cache.read()
            if record is None:
                return self._ok()
            try:
                cached = ActiveTimer.from_cache(self.user_id, record)
            except (KeyError, TypeError, ValueError, TimerError):
                log.warning(f"Cached timer could not be restored, discarding it: {record!r}", exc_info=True)
                self._clear_cache()
                return self._ok()

            self._active = cached
            self._show(cached)
            log.info(f"Optimistically restored {cached!r} from cache")
            return self._ok()

    def listing_failed(self, error):
        log.warning(f"Could not reach the timer API during recovery, trusting the local cache: {error}")
        return ActionResult(ok=False, state=self.status, error=error)

    # Second half: the remote's view of the user's timers wins over whatever the cache restored.
    def apply_listing(self, timers):
        with self._lock:
            cached = self._active
            running = []
            for t in timers:
                if t.get("endTime") or not t.get("startTime"):
                    continue
                try:
                    running.append(ActiveTimer.from_remote(self.user_id, t))
                except (KeyError, TypeError, ValueError, TimerError):
                    log.warning(f"Skipping unreadable running timer from the API: {t!r}", exc_info=True)
            self._entries = self._closed_entries(timers)

            if running:
                running.sort(key=lambda timer: timer.start_time, reverse=True)
                if len(running) > 1:
                    log.warning(f"Timer API reports {len(running)} running timers, using the most recent one")
                remote_timer = running[0]
                if (cached is not None and remote_timer.same_target(cached)
                        and remote_timer.start_time == cached.start_time
                        and not _has_pause_fields(timers, remote_timer)):
                    remote_timer.is_paused = cached.is_paused
                    remote_timer.paused_at = cached.paused_at
                    remote_timer.total_paused_ms = cached.total_paused_ms
                if cached is not None and cached != remote_timer:
                    log.info(f"Remote timer {remote_timer!r} overrides cached {cached!r}")
                self._active = remote_timer
                self._write_cache(remote_timer)
                self._show(remote_timer)
            elif self._active is not None:
                log.warning(f"Local state held {self._active!r} but the remote has no usable running timer, "
                            f"dropping to idle")
                self._drop_local()
            else:
                self._clear_cache()
                self.ticker.stop()

            log.info(f"Recovery finished in state '{self.status.value}' with {len(self._entries)} entries")
            return self._ok()

    #endregion === Recovery ===

    #region === State machine ===

    def start(self, task_id, project_id, description=None):
        with self._lock:
            try:
                self._require_target(task_id, project_id, "start a timer")
                if self._active is not None:
                    raise PreconditionError(
                        f"A timer is already {self._active.status.value} for task {self._active.task_id}, stop it first.")
                record = self.remote.start(self.user_id, project_id, task_id, description)
                timer = ActiveTimer(
                    user_id=self.user_id,
                    project_id=project_id,
                    task_id=task_id,
                    start_time=self._start_time_of(record),
                    description=description,
                    timer_id=record.get("_id") or record.get("id"),
                )
            except TimerError as e:
                return self._failed("start", e)

            self._active = timer
            self._write_cache(timer)
            self.ticker.start(timer)
            log.info(f"Started {timer!r}")
            return self._ok()

    def pause(self):
        with self._lock:
            timer = self._active
            try:
                if timer is None or timer.is_paused:
                    raise PreconditionError("There is no running timer to pause.")
                self.remote.pause(self.user_id, timer.project_id, timer.task_id)
            except TimerError as e:
                return self._failed("pause", e)

            timer.pause(self.clock())
            self._write_cache(timer)
            self.ticker.hold(timer)
            log.info(f"Paused {timer!r}")
            return self._ok()

    def resume(self):
        with self._lock:
            timer = self._active
            try:
                if timer is None or not timer.is_paused:
                    raise PreconditionError("There is no paused timer to resume.")
                self.remote.resume(self.user_id, timer.project_id, timer.task_id)
            except TimerError as e:
                return self._failed("resume", e)

            timer.resume(self.clock())
            self._write_cache(timer)
            self.ticker.start(timer)
            log.info(f"Resumed {timer!r}")
            return self._ok()

    # Stopping with nothing active is a successful no-op. A 404 from the remote means it already closed this timer
    # (most likely an earlier stop whose response never arrived), so local state is dropped without a new entry.
    def stop(self, description=None):
        with self._lock:
            timer = self._active
            if timer is None:
                log.info("Stop requested with no active timer, nothing to do")
                return self._ok()

            attempt_key = uuid.uuid4().hex
            try:
                record = self.remote.stop(self.user_id, timer.project_id, timer.task_id, description,
                                          idempotency_key=attempt_key)
            except RemoteError as e:
                if e.not_found:
                    log.warning(f"Remote has no running timer for {timer!r}, treating it as already stopped")
                    self._drop_local()
                    return self._ok()
                return self._failed("stop", e)
            except TimerError as e:
                return self._failed("stop", e)

            now = self.clock()
            self._drop_local()
            entry = materialize(self._closed_record(record, timer, now, description), self.user_id)
            self._entries.insert(0, entry)
            log.info(f"Stopped timer for task {timer.task_id}, logged {entry.duration} min as entry '{entry.id}'")
            return self._ok(entry)

    #endregion === State machine ===

    #region === Entries ===

    def log_manual(self, task_id, project_id, start_time, end_time, description=None):
        with self._lock:
            try:
                self._require_target(task_id, project_id, "log time")
                start, end = parse_iso(start_time), parse_iso(end_time)
                if start is None or end is None:
                    raise ManualLogError("A manual entry needs both a start and an end time.")
                if end <= start:
                    raise ManualLogError("A manual entry must end after it starts.")
                description = (description or "").strip() or self.manual_description
                record = self.remote.log_manual(self.user_id, project_id, task_id, start, end, description)
            except (TypeError, ValueError) as e:
                return self._failed("log_manual", ManualLogError(f"Unreadable manual entry times: {e}"))
            except TimerError as e:
                return self._failed("log_manual", e)

            base = {
                "user": self.user_id,
                "project": project_id,
                "task": task_id,
                "startTime": to_iso(start),
                "endTime": to_iso(end),
                "description": description,
                "totalPausedTime": 0,
            }
            entry = materialize({**base, **{k: v for k, v in record.items() if v is not None}}, self.user_id)
            self._entries.insert(0, entry)
            log.info(f"Logged {entry.duration} min manually for task {task_id} on {entry.date}")
            return self._ok(entry)

    # Logs `minutes` of work on `day`, the same way the log-time form does it.
    def log_manual_minutes(self, task_id, project_id, day, minutes, description=None):
        start, end = manual_window(day, minutes, self.manual_start_hour)
        return self.log_manual(task_id, project_id, start, end, description)

    def refresh_entries(self):
        with self._lock:
            try:
                timers = self.remote.list_for_user(self.user_id)
            except TimerError as e:
                return self._failed("refresh_entries", e)
            self._entries = self._closed_entries(timers)
            log.debug(f"Reloaded {len(self._entries)} time entries")
            return self._ok()

    def update_entry(self, entry_id, duration=None, date=None, description=None):
        with self._lock:
            try:
                duration, date = _entry_changes(duration, date)
            except (TypeError, ValueError, AttributeError) as e:
                return self._failed("update_entry", PreconditionError(f"Unreadable entry correction: {e}"))
            try:
                if duration is not None and duration < 0:
                    raise PreconditionError("Duration can't be negative.")
                record = self.remote.update(entry_id, duration=duration, date=date, description=description)
            except TimerError as e:
                return self._failed("update_entry", e)

            old = next((e for e in self._entries if e.id == entry_id), None)
            if record:
                entry = materialize(record, self.user_id, prefer_recorded=True)
            elif old is not None:
                changes = {k: v for k, v in (("duration", duration), ("date", date), ("description", description))
                           if v is not None}
                entry = dataclasses.replace(old, **changes)
            else:
                entry = None

            if entry is not None:
                if old is not None:
                    self._entries = [entry if e.id == entry_id else e for e in self._entries]
                else:
                    self._entries.insert(0, entry)
            log.info(f"Updated time entry '{entry_id}'")
            return self._ok(entry)

    def delete_entry(self, entry_id):
        with self._lock:
            try:
                self.remote.delete(entry_id)
            except TimerError as e:
                return self._failed("delete_entry", e)
            self._entries = [e for e in self._entries if e.id != entry_id]
            log.info(f"Deleted time entry '{entry_id}'")
            return self._ok()

    #endregion === Entries ===


# Whether the API sent pause bookkeeping for this timer at all. Older servers drop those fields entirely.
def _has_pause_fields(timers, timer):
    if timer.timer_id is None:
        return False
    for t in timers:
        if str(t.get("_id") or t.get("id")) == str(timer.timer_id):
            return "isPaused" in t or "totalPausedTime" in t
    return False

# Entry corrections come from forms as often as from code, so dates may arrive as "YYYY-MM-DD" and minutes as text.
def _entry_changes(duration, day):
    if duration is not None:
        if isinstance(duration, bool) or isinstance(duration, float) and not duration.is_integer():
            raise TypeError(f"duration must be whole minutes, got {duration!r}")
        duration = int(duration)
    if isinstance(day, str):
        day = date_cls.fromisoformat(day.strip())
    elif isinstance(day, datetime):
        day = day.date()
    elif day is not None and not isinstance(day, date_cls):
        raise TypeError(f"date must be a date or an ISO date string, got {day!r}")
    return duration, day
