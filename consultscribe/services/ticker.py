"""Periodic tick source driving the recording elapsed time."""

import logging
from threading import Thread, Event
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ElapsedTicker:
    """Calls a callback every interval seconds on a background thread.

    A ticker is single-use: once stopped it is discarded and a new one is
    created for the next recording interval.
    """

    def __init__(self, interval: float, callback: Callable[[], None]):
        self.interval = interval
        self.callback = callback
        self.stop_event = Event()
        self.thread: Optional[Thread] = None

    @property
    def is_running(self) -> bool:
        return self.thread is not None and not self.stop_event.is_set()

    def start(self) -> None:
        if self.thread is not None:
            logger.warning("Ticker already started")
            return
        self.thread = Thread(target=self._run, daemon=True)
        self.thread.name = "ElapsedTickerThread"
        self.thread.start()

    def stop(self) -> None:
        # Does not join: the callback may be waiting on a lock held by the caller
        self.stop_event.set()

    def _run(self) -> None:
        while not self.stop_event.wait(self.interval):
            try:
                self.callback()
            except Exception as e:
                logger.error(f"Error in ticker callback: {e}", exc_info=True)
