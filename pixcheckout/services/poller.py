"""Status poller: asks for a payment's status until it settles.

Used by ``flask watch-payment`` and by anything else that needs to wait
on a PIX payment outside a request. ``fetch_status`` is any callable that
takes nothing and returns a status dict (``{"status": ...}``) or a
status string.

Guarantees:
- at most one status request in flight at a time
- a terminal status stops polling and fires ``on_terminal`` exactly once
- reaching ``max_polls`` is not an error: outcome becomes "still_pending"
- fetch failures are recorded in ``error`` and polling carries on
- ``cancel()`` stops the background thread
"""

import logging
import threading

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {"CONFIRMED", "RECEIVED", "CANCELLED", "REFUNDED", "OVERDUE", "FAILED"}


class StatusPoller:
    def __init__(self, fetch_status, interval=8.0, max_polls=15, on_terminal=None):
        if max_polls < 1:
            raise ValueError("max_polls must be at least 1")
        self.fetch_status = fetch_status
        self.interval = interval
        self.max_polls = max_polls
        self.on_terminal = on_terminal

        self.poll_count = 0
        self.status = None
        self.error = None
        self.outcome = None  # terminal | still_pending | cancelled
        self.is_max_polls = False

        self._in_flight = threading.Lock()
        self._cancelled = threading.Event()
        self._done = threading.Event()
        self._notified = False
        self._thread = None

    @property
    def is_done(self):
        return self._done.is_set()

    def poll_once(self):
        """Issue one status request unless one is already running.

        Returns the status seen, or None when skipped or failed.
        """
        if self.is_done or self._cancelled.is_set():
            return None
        if not self._in_flight.acquire(blocking=False):
            logger.debug("Status request already in flight, skipping tick")
            return None

        try:
            self.poll_count += 1
            try:
                result = self.fetch_status()
            except Exception as e:
                self.error = str(e)
                logger.warning(f"Status poll {self.poll_count} failed: {e}")
                status = None
            else:
                status = result.get("status") if isinstance(result, dict) else result
                status = str(status).upper() if status else None
                self.status = status or self.status
                self.error = result.get("error") if isinstance(result, dict) else None

            if status in TERMINAL_STATUSES:
                self._finish("terminal")
            elif self.poll_count >= self.max_polls:
                self.is_max_polls = True
                logger.info(
                    f"Gave up after {self.poll_count} polls, payment still pending"
                )
                self._finish("still_pending")
            return status
        finally:
            self._in_flight.release()

    def _finish(self, outcome):
        self.outcome = outcome
        self._done.set()
        if outcome == "terminal" and not self._notified:
            self._notified = True
            logger.info(f"Payment reached {self.status}")
            if self.on_terminal:
                self.on_terminal(self.status)

    def run(self):
        """Poll in the calling thread until done or cancelled. Returns the outcome."""
        while not self.is_done and not self._cancelled.is_set():
            self.poll_once()
            if self.is_done:
                break
            # Returns early when cancel() is called.
            self._cancelled.wait(self.interval)

        if self._cancelled.is_set() and not self.is_done:
            self.outcome = "cancelled"
        return self.outcome

    def start(self):
        """Poll on a daemon thread."""
        if self._thread is not None:
            return self._thread
        self._thread = threading.Thread(target=self.run, name="status-poller", daemon=True)
        self._thread.start()
        return self._thread

    def refresh(self):
        """Manual "check now"; obeys the one-in-flight rule."""
        return self.poll_once()

    def cancel(self, timeout=None):
        self._cancelled.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def wait(self, timeout=None):
        return self._done.wait(timeout)
