import logging
import os
import threading
import time
from datetime import datetime
from pathlib import Path

from conversions.models import ErrorKind, TaskStatus
from conversions.service.config import get_download_dir, get_log_dir
from conversions.service.orchestrator import ConversionOutcome, run_conversion

logger = logging.getLogger(__name__)


def write_log(log_path, message):
    """Append message to log file"""
    if log_path:
        os.makedirs(os.path.dirname(log_path), exist_ok=True)
        with open(log_path, 'a') as f:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
            f.write(f"[{timestamp}] {message}\n")


def process_conversion(registry, task_id, output_dir=None, log_dir=None, **run_options):
    """
    Background unit for one conversion task.

    Steps:
    1. PROCESSING - mark the task and start the converter
    2. progress updates as the converter reports them
    3. COMPLETED or FAILED - exactly one terminal update

    The task record stays in the registry; only its id is held here, so a task
    evicted while its converter runs simply has its final update dropped.

    Args:
        registry: TaskRegistry that owns the task
        task_id: Id returned by registry.create
        output_dir: Artifact directory (default from settings)
        log_dir: Directory for the per-task log file (default from settings)
        **run_options: Passed through to run_conversion (timeout, command, ...)

    Returns:
        ConversionOutcome, or None if the task was gone before it started
    """
    task = registry.get(task_id)
    if task is None:
        logger.warning('Task %s not found, nothing to convert', task_id)
        return None

    output_dir = Path(output_dir) if output_dir else get_download_dir()
    log_path = Path(log_dir or get_log_dir()) / f'{task_id}.log'

    def task_log(message):
        write_log(log_path, message)
        logger.debug('[%s] %s', task_id, message)

    task_log("=== TASK STARTED ===")
    task_log(f"Task: {task_id}")
    task_log(f"URL: {task.url}")
    task_log(f"Requested quality: {task.requested_quality}")

    if not registry.update(task_id, status=TaskStatus.PROCESSING, progress=0):
        task_log("Task no longer registered, skipping")
        return None

    def on_progress(percent):
        registry.update(task_id, status=TaskStatus.PROCESSING, progress=percent)

    task_log("=== CONVERTING ===")
    try:
        outcome = run_conversion(
            task.url,
            task.requested_quality,
            output_dir=output_dir,
            on_progress=on_progress,
            created_at=task.created_at,
            logger=task_log,
            **run_options,
        )
    except Exception as e:
        logger.exception('Conversion crashed for task %s', task_id)
        outcome = ConversionOutcome.failed(ErrorKind.PROCESS_FAILURE, f'Conversion error: {e}')

    if outcome.succeeded:
        task_log(f"=== COMPLETED: {outcome.filename} ===")
    else:
        task_log(f"=== FAILED ({outcome.error_kind}): {outcome.message} ===")

    if registry.update(task_id, **outcome.as_task_fields()):
        logger.info('Task %s %s', task_id, outcome.status)
    else:
        logger.warning(
            'Task %s was removed before its %s result could be recorded', task_id, outcome.status
        )

    return outcome


class ConversionRunner:
    """
    Launches and tracks one background thread per conversion task.

    Args:
        registry: TaskRegistry the tasks live in
        max_concurrent: Converter processes allowed at once; 0 is unbounded.
            Tasks beyond the bound stay pending until a slot frees up.
        **run_options: Passed to process_conversion for every task
    """

    def __init__(self, registry, max_concurrent=0, **run_options):
        self.registry = registry
        self.run_options = run_options
        self._slots = threading.BoundedSemaphore(max_concurrent) if max_concurrent else None
        self._threads = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self):
        with self._lock:
            return self._closed

    def launch(self, task_id):
        """Start the background unit for a task and return its thread"""
        with self._lock:
            if self._closed:
                raise RuntimeError('Conversion runner has been shut down')
            thread = threading.Thread(
                target=self._run, args=(task_id,), name=f'conversion-{task_id}', daemon=True
            )
            self._threads[task_id] = thread
            thread.start()
        return thread

    def _run(self, task_id):
        try:
            if self._slots is None:
                process_conversion(self.registry, task_id, **self.run_options)
            else:
                with self._slots:
                    process_conversion(self.registry, task_id, **self.run_options)
        finally:
            with self._lock:
                self._threads.pop(task_id, None)

    def running(self):
        """Ids of tasks whose background unit has not finished"""
        with self._lock:
            return list(self._threads)

    def join(self, task_id, timeout=None):
        """
        Wait for a task's background unit.

        Returns:
            bool: True if the unit has finished (or was never running here)
        """
        with self._lock:
            thread = self._threads.get(task_id)
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def shutdown(self, wait=True, timeout=None):
        """
        Stop accepting tasks and optionally wait for running ones.

        Running converters are not interrupted; their own ceiling still
        applies.

        Returns:
            list: Ids still running when shutdown returned
        """
        with self._lock:
            self._closed = True
            threads = list(self._threads.values())

        if wait:
            deadline = None if timeout is None else time.monotonic() + timeout
            for thread in threads:
                remaining = None if deadline is None else max(0, deadline - time.monotonic())
                thread.join(remaining)

        return self.running()