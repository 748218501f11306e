"""Explicit lifecycle state for the worker's polling loops."""

from __future__ import annotations

import logging
import threading
from enum import Enum

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    """Lifecycle states of a polling loop."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"


class PollingLoop:
    """Runs ``tick()`` on a background thread at a fixed interval.

    ``stop()`` is cooperative: it prevents new ticks from starting and wakes the
    interval sleep, but never interrupts a tick that is already running. Errors
    raised by ``tick()`` are logged and the loop continues on the next interval.
    """

    def __init__(self, *, name: str, interval_seconds: float) -> None:
        if interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        self.name = name
        self.interval_seconds = interval_seconds
        self._state = LoopState.IDLE
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def state(self) -> LoopState:
        with self._state_lock:
            return self._state

    def start(self) -> bool:
        """Start the loop thread. Returns False if it is already running."""

        with self._state_lock:
            if self._state is not LoopState.IDLE:
                logger.info("%s already running", self.name)
                return False
            self._state = LoopState.RUNNING
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, daemon=True, name=self.name)
        self._on_start()
        self._thread.start()
        logger.info("%s started", self.name)
        return True

    def stop(self, timeout: float | None = None) -> None:
        """Request stop and wait up to ``timeout`` seconds for the loop thread."""

        with self._state_lock:
            if self._state is LoopState.IDLE:
                return
            self._state = LoopState.STOPPING
            thread = self._thread
        logger.info("Stopping %s", self.name)
        self._stop_event.set()
        self._on_stop()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("%s still finishing an in-flight cycle", self.name)

    def tick(self) -> object:
        raise NotImplementedError

    def sleep(self, seconds: float) -> bool:
        """Sleep unless stopped. Returns True when woken by a stop request."""

        return self._stop_event.wait(timeout=max(0.0, seconds))

    def _on_start(self) -> None:
        """Hook for subclasses that own extra timers."""

    def _on_stop(self) -> None:
        """Hook for subclasses that own extra timers."""

    def _run(self) -> None:
        try:
            while not self._stop_event.is_set():
                try:
                    self.tick()
                except Exception:
                    logger.exception("%s cycle failed", self.name)
                if self.sleep(self.interval_seconds):
                    break
        finally:
            with self._state_lock:
                self._state = LoopState.IDLE
                self._thread = None
            logger.info("%s stopped", self.name)
