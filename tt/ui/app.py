import sys
from PySide6.QtCore import QObject, QRunnable, QThreadPool, QTimer, Qt, Signal
from PySide6.QtWidgets import (
    QApplication,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QListWidget,
    QMainWindow,
    QPushButton,
    QVBoxLayout,
    QWidget,
)
from tt.common.logger import configure_logging, log
from tt.core import config
from tt.core.errors import TimerError
from tt.core.reconciler import TimerReconciler
from tt.core.reports import export_csv, filter_entries, total_minutes
from tt.core.ticker import ElapsedTicker, format_elapsed
from tt.core.timer_state import TimerStatus
from tt.remote.client import TimerRemote

_RECENT_ENTRIES = 20


class _ListingSignals(QObject):
    finished = Signal(object, object)


# Fetches the user's timers off the GUI thread. The result (or the RemoteError) is handed back through a queued
# signal, so every state change still happens on the GUI thread.
class _ListingWorker(QRunnable):

    def __init__(self, remote, user_id):
        super().__init__()
        self.setAutoDelete(False)
        self.remote = remote
        self.user_id = user_id
        self.signals = _ListingSignals()

    def run(self):
        try:
            outcome = self.remote.list_for_user(self.user_id)
        except TimerError as e:
            outcome = e
        self.signals.finished.emit(self, outcome)


# ---------------------------------------------------------------------------
# Main window
# ---------------------------------------------------------------------------

# Main window of the timer. One live timer at the top, recent entries underneath.
class MainWindow(QMainWindow):

    def __init__(self, settings):
        super().__init__()
        self.setWindowTitle("Task Timer")
        self.settings = settings

        central = QWidget()
        self._main_lay = QVBoxLayout(central)
        self.setCentralWidget(central)

        self._project_edit = QLineEdit()
        self._project_edit.setPlaceholderText("Project id")
        self._task_edit = QLineEdit()
        self._task_edit.setPlaceholderText("Task id")
        self._desc_edit = QLineEdit()
        self._desc_edit.setPlaceholderText(settings["default_description"])
        for w in (self._project_edit, self._task_edit, self._desc_edit):
            self._main_lay.addWidget(w)

        self._elapsed_lbl = QLabel(format_elapsed(0))
        self._elapsed_lbl.setAlignment(Qt.AlignCenter)
        font = self._elapsed_lbl.font()
        font.setPointSize(font.pointSize() * 2)
        self._elapsed_lbl.setFont(font)
        self._main_lay.addWidget(self._elapsed_lbl)

        buttons = QHBoxLayout()
        self._start_btn = QPushButton("Start")
        self._pause_btn = QPushButton("Pause")
        self._stop_btn = QPushButton("Stop")
        self._export_btn = QPushButton("Export CSV")
        self._start_btn.clicked.connect(self._on_start)
        self._pause_btn.clicked.connect(self._on_pause_resume)
        self._stop_btn.clicked.connect(self._on_stop)
        self._export_btn.clicked.connect(self._on_export)
        for b in (self._start_btn, self._pause_btn, self._stop_btn, self._export_btn):
            buttons.addWidget(b)
        self._main_lay.addLayout(buttons)

        self._status_lbl = QLabel("")
        self._status_lbl.setWordWrap(True)
        self._main_lay.addWidget(self._status_lbl)

        self._entries_list = QListWidget()
        self._main_lay.addWidget(self._entries_list)

        # -- Timer core --
        self._remote = TimerRemote.from_settings(settings)
        ticker = ElapsedTicker(
            on_tick=lambda seconds: self._elapsed_lbl.setText(format_elapsed(seconds)),
            interval_ms=settings["tick_interval_ms"],
        )
        self.core = TimerReconciler(
            settings["user_id"],
            self._remote,
            ticker=ticker,
            manual_description=settings["manual_description"],
            manual_start_hour=settings["manual_start_hour_utc"],
        )
        self._reconciling = False
        self._listing_workers = set()
        self.core.restore_cached()
        self._refresh()
        # The listing can sit through timeouts and retries, so it only starts once the window is up.
        QTimer.singleShot(0, self._start_reconcile)

    # ------------------------------------------------------------------ #
    #  Recovery                                                            #
    # ------------------------------------------------------------------ #

    def _start_reconcile(self):
        self._reconciling = True
        self._status_lbl.setText("Syncing with the server...")
        self._refresh()
        worker = _ListingWorker(self._remote, self.core.user_id)
        worker.signals.finished.connect(self._on_listing)
        self._listing_workers.add(worker)
        QThreadPool.globalInstance().start(worker)

    # Runs on the GUI thread, the worker only fetched.
    def _on_listing(self, worker, outcome):
        self._listing_workers.discard(worker)
        if isinstance(outcome, TimerError):
            result = self.core.listing_failed(outcome)
            self._status_lbl.setText(f"Offline, showing the locally cached timer. ({result.message})")
        else:
            self.core.apply_listing(outcome)
            self._status_lbl.setText("")
        self._reconciling = False
        self._refresh()

    # ------------------------------------------------------------------ #
    #  Display                                                             #
    # ------------------------------------------------------------------ #

    def _refresh(self):
        status = self.core.status
        active = self.core.active
        if active is not None:
            self._project_edit.setText(active.project_id)
            self._task_edit.setText(active.task_id)
            self._desc_edit.setText(active.description)
        idle = status is TimerStatus.IDLE
        for w in (self._project_edit, self._task_edit, self._desc_edit):
            w.setEnabled(idle)
        self._start_btn.setEnabled(idle and not self._reconciling)
        self._pause_btn.setEnabled(not idle and not self._reconciling)
        self._pause_btn.setText("Resume" if status is TimerStatus.PAUSED else "Pause")
        self._stop_btn.setEnabled(not idle and not self._reconciling)

        entries = filter_entries(self.core.entries, user_id=self.core.user_id)
        self._entries_list.clear()
        for entry in entries[:_RECENT_ENTRIES]:
            self._entries_list.addItem(f"{entry.date}  {format_elapsed(entry.duration * 60)[:-3]}  {entry.description}")
        self.statusBar().showMessage(f"{len(entries)} entries, {total_minutes(entries) / 60:.2f} h total")

    # Runs a core action with the controls disabled, so a second click can't race the first.
    def _run(self, action, *args):
        for b in (self._start_btn, self._pause_btn, self._stop_btn):
            b.setEnabled(False)
        QApplication.processEvents()
        try:
            result = action(*args)
        finally:
            self._refresh()
        self._status_lbl.setText("" if result.ok else result.message)
        return result

    # ------------------------------------------------------------------ #
    #  Handlers                                                            #
    # ------------------------------------------------------------------ #

    def _on_start(self):
        self._run(self.core.start, self._task_edit.text().strip(), self._project_edit.text().strip(),
                  self._desc_edit.text().strip() or None)

    def _on_pause_resume(self):
        if self.core.status is TimerStatus.PAUSED:
            self._run(self.core.resume)
        else:
            self._run(self.core.pause)

    def _on_stop(self):
        result = self._run(self.core.stop, self._desc_edit.text().strip() or None)
        if result.ok and result.entry is not None:
            self._status_lbl.setText(f"Logged {result.entry.duration} min.")

    def _on_export(self):
        try:
            path = export_csv(filter_entries(self.core.entries, user_id=self.core.user_id))
        except OSError as e:
            log.exception("CSV export failed")
            self._status_lbl.setText(f"Export failed: {e}")
            return
        self._status_lbl.setText(f"Exported to {path}")

    def closeEvent(self, event):
        self.core.ticker.stop(clear_display=False)
        # A listing still in flight keeps using the http client, process exit takes care of it then.
        if not self._listing_workers:
            self._remote.close()
        log.info("Main window closed")
        super().closeEvent(event)


def main():
    settings = config.load_settings()
    configure_logging(settings)
    if not settings["user_id"]:
        raise RuntimeError("No user_id configured. Set it in settings.json or the TT_USER_ID environment variable.")
    app = QApplication(sys.argv)
    window = MainWindow(settings)
    window.show()
    sys.exit(app.exec())
