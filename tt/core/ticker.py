from PySide6.QtCore import QTimer
from tt.common.logger import log
from tt.core.timer_state import utc_now


# Renders a number of seconds as H:MM:SS.
def format_elapsed(seconds):
    total = int(max(0, seconds))
    h, rem = divmod(total, 3600)
    m, s = divmod(rem, 60)
    return f"{h}:{m:02d}:{s:02d}"


# Display-only clock for the active timer. Recomputes elapsed time from the timer's fixed start on every tick and
# hands it to on_tick; it never writes anything anywhere. Only one schedule is ever alive, start() always cancels
# the previous one first.
class ElapsedTicker:

    def __init__(self, on_tick=None, interval_ms=1000, clock=utc_now):
        self._on_tick = on_tick
        self._clock = clock
        self._timer = None
        self.last_elapsed = 0.0

        self._qtimer = QTimer()
        self._qtimer.setInterval(interval_ms)
        self._qtimer.timeout.connect(self._tick)

    @property
    def active(self):
        return self._qtimer.isActive()

    def _emit(self, elapsed):
        self.last_elapsed = elapsed
        if self._on_tick is not None:
            self._on_tick(elapsed)

    def _tick(self):
        # A tick that was already queued when stop() ran
        if self._timer is None:
            return
        self._emit(self._timer.elapsed(self._clock()))

    def start(self, timer):
        self.stop(clear_display=False)
        self._timer = timer
        self._tick()
        self._qtimer.start()
        log.debug(f"Ticker started for {timer!r}")

    # Cancels the schedule but leaves one final frozen reading on display, used while paused.
    def hold(self, timer):
        self.stop(clear_display=False)
        self._emit(timer.elapsed(self._clock()))

    def stop(self, clear_display=True):
        if self._qtimer.isActive():
            self._qtimer.stop()
            log.debug("Ticker stopped")
        self._timer = None
        if clear_display:
            self._emit(0.0)
