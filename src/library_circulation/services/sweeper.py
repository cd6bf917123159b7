"""Background thread that periodically marks past-due loans OVERDUE."""

import logging
import threading

from .borrow_service import BorrowService

logger = logging.getLogger(__name__)


class OverdueSweeper:
    """
    Runs ``BorrowService.check_overdue`` every ``interval`` seconds.

    The sweep is a single conditional bulk UPDATE, so it is safe to run
    alongside live borrow/return/renew traffic and on several instances at
    once. A failed sweep is logged and retried at the next tick.
    """

    def __init__(self, service: BorrowService, interval: float, run_on_start: bool = False):
        self.service = service
        self.interval = interval
        self.run_on_start = run_on_start
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> int | None:
        """One sweep; returns the number of records moved, or None if it failed."""
        try:
            return self.service.check_overdue()
        except Exception:
            logger.exception("Overdue sweep failed")
            return None

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="overdue-sweeper", daemon=True)
        self._thread.start()
        logger.info("Overdue sweeper started (every %.0fs)", self.interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Overdue sweeper stopped")

    def _loop(self) -> None:
        if self.run_on_start:
            self.run_once()
        while not self._stop.wait(self.interval):
            self.run_once()
