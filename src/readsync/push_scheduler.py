import logging
import threading

import schedule

logger = logging.getLogger(__name__)


class PushScheduler:
    """
    Debounces progress pushes into one call after a quiet period.

    Holds at most one pending call: every schedule() pushes the deadline back,
    flush() runs the pending call right away. The callback never runs twice at
    the same time, whichever thread triggers it.
    """

    def __init__(self, callback, wait: float = 5.0, poll_interval: float = 0.5, autostart: bool = True):
        self.callback = callback
        self.wait = wait
        self.poll_interval = poll_interval
        self.autostart = autostart

        self._scheduler = schedule.Scheduler()
        self._job = None
        self._due = False
        self._lock = threading.Lock()
        self.run_lock = threading.Lock()
        self._stop = threading.Event()
        self._ticker = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._job is not None or self._due

    def schedule(self) -> None:
        with self._lock:
            if self._job is not None:
                self._scheduler.cancel_job(self._job)
            self._job = self._scheduler.every(self.wait).seconds.do(self._mark_due)
        if self.autostart:
            self._ensure_ticker()

    def _mark_due(self):
        # Runs inside run_pending(), with _lock held
        self._job = None
        self._due = True
        return schedule.CancelJob

    def _take(self) -> bool:
        with self._lock:
            had_call = self._job is not None or self._due
            if self._job is not None:
                self._scheduler.cancel_job(self._job)
            self._job = None
            self._due = False
            return had_call

    def _run(self) -> None:
        with self.run_lock:
            try:
                self.callback()
            except Exception as e:
                logger.error(f"Progress push failed: {e}")

    def run_pending(self) -> None:
        with self._lock:
            self._scheduler.run_pending()
            due, self._due = self._due, False
        if due:
            self._run()

    def flush(self) -> None:
        if self._take():
            self._run()

    def cancel(self) -> None:
        self._take()

    def _ensure_ticker(self) -> None:
        if self._ticker is not None and self._ticker.is_alive():
            return
        self._stop.clear()
        self._ticker = threading.Thread(target=self._tick, name="kosync-push", daemon=True)
        self._ticker.start()

    def _tick(self) -> None:
        while not self._stop.wait(self.poll_interval):
            self.run_pending()

    def close(self) -> None:
        self.cancel()
        self._stop.set()
        if self._ticker is not None and self._ticker is not threading.current_thread():
            self._ticker.join(timeout=self.poll_interval * 2)
        self._ticker = None
