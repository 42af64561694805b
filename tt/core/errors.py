"""Error taxonomy for the timer core, plus the result value every action returns."""

from dataclasses import dataclass
from typing import Any


class TimerError(Exception):
    """Base class for everything the timer core raises or reports."""


class PreconditionError(TimerError):
    """An action was requested from a state that doesn't allow it. Never reaches the remote."""


class ManualLogError(PreconditionError):
    """Manual log whose end isn't strictly after its start."""


class InvalidIdentifierError(TimerError):
    """An id that isn't a 24 character hex reference."""

    def __init__(self, label, value):
        self.label = label
        self.value = value
        super().__init__(f"Invalid {label}: {value!r}")


class RemoteError(TimerError):
    """The timer API couldn't be reached, timed out, or answered with a non-2xx status."""

    def __init__(self, message, status_code=None):
        self.status_code = status_code
        self.message = message
        super().__init__(message if status_code is None else f"[{status_code}] {message}")

    @property
    def not_found(self):
        return self.status_code == 404


@dataclass
class ActionResult:
    ok: bool
    state: Any
    error: TimerError | None = None
    entry: Any = None

    @property
    def message(self):
        return str(self.error) if self.error is not None else ""
