"""
Periodic expiry of finished tasks.

ExpirySweeper runs TaskRegistry.sweep on its own thread at a fixed interval.
It is started and stopped together with the registry it serves instead of
running as a process-wide timer.
"""

import logging
import threading

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """
    Calls registry.sweep() every `interval` seconds until stopped.

    Args:
        registry: TaskRegistry to sweep
        interval: Seconds between sweeps
    """

    def __init__(self, registry, interval=3600):
        if interval <= 0:
            raise ValueError('Sweep interval must be positive')
        self.registry = registry
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread = None

    @property
    def is_running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name='task-expiry-sweeper', daemon=True)
        self._thread.start()
        logger.debug('Expiry sweeper started (every %s seconds)', self.interval)

    def stop(self, timeout=None):
        """Stop the sweeper and wait for its thread to exit"""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.debug('Expiry sweeper stopped')

    def run_once(self, now=None):
        """Sweep immediately. Returns the removed task ids."""
        return self.registry.sweep(now=now)

    def _loop(self):
        while not self._stop_event.wait(self.interval):
            try:
                self.run_once()
            except Exception:
                # Keep sweeping on later ticks
                logger.exception('Task expiry sweep failed')
