"""
Conversion engine.

Wires the task registry, the background runner and the expiry sweeper into
one object with a start/shutdown lifecycle. Request handlers and management
commands talk to the engine: submit a URL, then poll get() until the task is
completed or failed.
"""

import logging
import threading

from conversions.registry import TaskRegistry
from conversions.scheduler import ExpirySweeper
from conversions.service.config import (
    get_default_quality,
    get_max_concurrent,
    get_max_tasks,
    get_recent_limit,
    get_sweep_interval,
    get_task_ttl,
)
from conversions.service.quality import validate_request
from conversions.tasks import ConversionRunner

logger = logging.getLogger(__name__)


class ConversionEngine:
    def __init__(self, registry=None, runner=None, sweeper=None):
        # TaskRegistry defines __len__, so an empty one is falsy
        if registry is None:
            registry = TaskRegistry(max_tasks=get_max_tasks(), ttl=get_task_ttl())
        if runner is None:
            runner = ConversionRunner(registry, max_concurrent=get_max_concurrent())
        if sweeper is None:
            sweeper = ExpirySweeper(registry, interval=get_sweep_interval())
        self.registry = registry
        self.runner = runner
        self.sweeper = sweeper

    def start(self):
        self.sweeper.start()
        return self

    def shutdown(self, wait=True, timeout=None):
        """
        Stop the sweeper and the runner.

        Returns:
            list: Ids of conversions still running afterwards
        """
        self.sweeper.stop()
        still_running = self.runner.shutdown(wait=wait, timeout=timeout)
        if still_running:
            logger.warning('%d conversions still running at shutdown', len(still_running))
        return still_running

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    def submit(self, url, quality=None):
        """
        Validate a request, create its task and start converting in the background.

        Returns immediately with the task id; the task starts out pending.

        Raises:
            InvalidRequest: If the URL or quality is rejected (no task is created)
            RuntimeError: If the engine has been shut down (no task is created)
        """
        quality = quality or get_default_quality()
        validate_request(url, quality)
        if self.runner.closed:
            raise RuntimeError('Conversion engine has been shut down')

        task_id = self.registry.create({'url': url.strip(), 'quality': quality})
        try:
            self.runner.launch(task_id)
        except RuntimeError:
            # Shut down between the check and the launch
            self.registry.delete(task_id)
            raise
        return task_id

    def get(self, task_id):
        return self.registry.get(task_id)

    def list_recent(self, limit=None):
        return self.registry.list_recent(limit if limit is not None else get_recent_limit())

    def statistics(self):
        return self.registry.statistics()

    def wait(self, task_id, timeout=None):
        """Block until the task's background unit finishes, then return the task (or None)"""
        self.runner.join(task_id, timeout)
        return self.registry.get(task_id)


_engine = None
_engine_lock = threading.Lock()


def get_engine():
    """Process-wide engine built from settings and started on first use"""
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = ConversionEngine().start()
        return _engine


def reset_engine(wait=True, timeout=None):
    """Shut down and forget the process-wide engine"""
    global _engine
    with _engine_lock:
        engine, _engine = _engine, None
    if engine is not None:
        engine.shutdown(wait=wait, timeout=timeout)
