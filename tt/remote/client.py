import time
import httpx
from tt.common.logger import log
from tt.core.errors import RemoteError
from tt.core.timer_state import to_iso, validate_object_id


# Thin wrapper around the timer REST API. Everything here either returns the unwrapped payload or raises
# RemoteError. Ids are validated before a request ever goes out.
#
# Only reads are retried (with exponential backoff). Writes go out exactly once, a retried start could double-start
# a timer.
class TimerRemote:

    def __init__(self, base_url, timeout=10.0, retries=3, base_delay=0.5, max_delay=8.0, token=None,
                 client: httpx.Client | None = None, sleep=time.sleep):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout, headers=headers)
        self.retries = retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings, **kwargs):
        return cls(
            base_url=settings["api_base_url"],
            timeout=settings["request_timeout"],
            retries=settings["read_retries"],
            base_delay=settings["retry_base_delay"],
            max_delay=settings["retry_max_delay"],
            **kwargs,
        )

    def close(self):
        self._client.close()

    #region === Transport ===

    def _backoff_delay(self, attempt):
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    # Pulls the server's error message out of an AppError-style body, falling back to the raw text.
    @staticmethod
    def _error_message(response):
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(body, dict):
            return body.get("message") or body.get("error") or response.reason_phrase
        return response.reason_phrase

    def _send(self, method, url, **kwargs):
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteError(f"{method} {url} timed out") from e
        except httpx.HTTPError as e:
            raise RemoteError(f"{method} {url} failed: {e}") from e

        if response.is_error:
            raise RemoteError(self._error_message(response), status_code=response.status_code)
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise RemoteError(f"{method} {url} returned a non-JSON body", status_code=response.status_code) from e

    # Idempotent reads only. Retries transport failures and 5xx, gives up immediately on 4xx.
    def _read(self, url):
        attempt = 0
        while True:
            try:
                return self._send("GET", url)
            except RemoteError as e:
                retryable = e.status_code is None or e.status_code >= 500
                if not retryable or attempt >= self.retries:
                    raise
                delay = self._backoff_delay(attempt)
                log.warning(f"GET {url} failed ({e}), retry {attempt + 1}/{self.retries} in {delay:.1f}s")
                self._sleep(delay)
                attempt += 1

    @staticmethod
    def _timer(body):
        return (body.get("data") or {}).get("timer") or {}

    @staticmethod
    def _timers(body):
        return (body.get("data") or {}).get("timers") or []

    @staticmethod
    def _ids(user_id, project_id, task_id):
        return {
            "userId": validate_object_id(user_id, "userId"),
            "projectId": validate_object_id(project_id, "projectId"),
            "taskId": validate_object_id(task_id, "taskId"),
        }

    #endregion === Transport ===

    #region === Timer state machine ===

    def start(self, user_id, project_id, task_id, description=None):
        payload = self._ids(user_id, project_id, task_id)
        if description:
            payload["description"] = description
        return self._timer(self._send("PATCH", "/timers/start", json=payload))

    # The idempotency key lets the server recognise a repeated stop of the same attempt.
    def stop(self, user_id, project_id, task_id, description=None, idempotency_key=None):
        payload = self._ids(user_id, project_id, task_id)
        if description:
            payload["description"] = description
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        return self._timer(self._send("PATCH", "/timers/stop", json=payload, headers=headers))

    def pause(self, user_id, project_id, task_id):
        return self._timer(self._send("PATCH", "/timers/pause", json=self._ids(user_id, project_id, task_id)))

    def resume(self, user_id, project_id, task_id):
        return self._timer(self._send("PATCH", "/timers/resume", json=self._ids(user_id, project_id, task_id)))

    #endregion === Timer state machine ===

    #region === Entries ===

    def log_manual(self, user_id, project_id, task_id, start_time, end_time, description=None):
        payload = {
            "user": validate_object_id(user_id, "user"),
            "project": validate_object_id(project_id, "project"),
            "task": validate_object_id(task_id, "task"),
            "startTime": to_iso(start_time),
            "endTime": to_iso(end_time),
        }
        if description:
            payload["description"] = description
        return self._timer(self._send("POST", "/timers/log", json=payload))

    def list_for_user(self, user_id):
        validate_object_id(user_id, "userId")
        return self._timers(self._read(f"/timers/user/{user_id}"))

    def list_for_project(self, project_id):
        validate_object_id(project_id, "projectId")
        return self._timers(self._read(f"/timers/project/{project_id}"))

    def update(self, entry_id, duration=None, date=None, description=None):
        validate_object_id(entry_id, "entryId")
        payload = {}
        if duration is not None:
            payload["duration"] = duration
        if date is not None:
            payload["date"] = date if isinstance(date, str) else date.isoformat()
        if description is not None:
            payload["description"] = description
        return self._timer(self._send("PATCH", f"/timers/{entry_id}", json=payload))

    def delete(self, entry_id):
        validate_object_id(entry_id, "entryId")
        self._send("DELETE", f"/timers/{entry_id}")

    #endregion === Entries ===
