import json
from tt.common.logger import log
from tt.common.setup import PATHS

CACHE_PATH = PATHS.current / "active_timer.json"

_REQUIRED_KEYS = ("taskId", "projectId", "startTime")


# Single-slot recovery cache for the active timer. One file, present while a timer is active and gone otherwise.
# Only ever a hint for the next startup, the remote has the final say.
class TimerCache:

    def __init__(self, path=None):
        self.path = path or CACHE_PATH

    # Returns the raw cached record, or None if there's nothing usable. Broken records are removed so they can't
    # poison the next startup either.
    def read(self):
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                record = json.load(f)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError):
            log.warning(f"Could not read cached timer from '{self.path}', discarding it.", exc_info=True)
            self.clear()
            return None

        if not isinstance(record, dict) or any(not record.get(key) for key in _REQUIRED_KEYS):
            log.warning(f"Cached timer at '{self.path}' is missing required fields, discarding it: {record!r}")
            self.clear()
            return None
        return record

    def write(self, timer):
        record = timer.to_cache()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(record, f, indent=2)
        log.debug(f"Cached active timer to '{self.path}': {record}")

    def clear(self):
        try:
            self.path.unlink()
            log.debug(f"Cleared cached timer at '{self.path}'")
        except FileNotFoundError:
            pass
