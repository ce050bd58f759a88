"""
Task registry for media conversions.

Thread-safe in-memory storage of Task records. Request handlers create and
read tasks; background conversion units update them by id. Every mutation
and every read goes through one lock, and reads hand out copies so callers
never share a live record.
"""

import logging
import threading
from dataclasses import replace
from datetime import timedelta

from django.utils import timezone
from nanoid import generate

from conversions.models import Task, TaskStatus

logger = logging.getLogger(__name__)

TASK_ID_ALPHABET = 'ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789'

# 22 symbols from a 62-symbol alphabet is ~131 bits of randomness
TASK_ID_SIZE = 22

DEFAULT_MAX_TASKS = 100
DEFAULT_TTL = timedelta(hours=24)


def generate_task_id():
    """Generate an unguessable task id with A-Z a-z 0-9 alphabet"""
    return generate(TASK_ID_ALPHABET, size=TASK_ID_SIZE)


class TaskRegistry:
    """
    Owns every Task record.

    Args:
        max_tasks: Live entries kept; creating beyond this evicts the oldest
            created tasks regardless of status
        ttl: Age (by updated_at) after which terminal tasks are swept
        clock: Callable returning the current aware datetime
    """

    def __init__(self, max_tasks=DEFAULT_MAX_TASKS, ttl=DEFAULT_TTL, clock=None):
        if max_tasks < 1:
            raise ValueError('max_tasks must be at least 1')
        self.max_tasks = max_tasks
        self.ttl = ttl
        self._clock = clock or timezone.now
        # dicts keep insertion order, which is creation order here
        self._tasks = {}
        self._lock = threading.Lock()

    def create(self, params):
        """
        Register a new pending task.

        Args:
            params: Mapping with 'url' and 'quality' (or 'requested_quality')

        Returns:
            str: The new task id
        """
        quality = params.get('quality', params.get('requested_quality'))
        now = self._clock()

        with self._lock:
            task_id = generate_task_id()
            while task_id in self._tasks:
                task_id = generate_task_id()

            self._tasks[task_id] = Task(
                id=task_id,
                url=params['url'],
                requested_quality=quality,
                created_at=now,
                updated_at=now,
            )
            evicted = self._evict_overflow()

        logger.debug('Created task %s: %s (%s)', task_id, params['url'], quality)
        for old_id in evicted:
            logger.info('Evicted task %s (registry over %d entries)', old_id, self.max_tasks)
        return task_id

    def _evict_overflow(self):
        """Drop oldest-created entries until within max_tasks. Caller holds the lock."""
        evicted = []
        while len(self._tasks) > self.max_tasks:
            oldest_id = next(iter(self._tasks))
            del self._tasks[oldest_id]
            evicted.append(oldest_id)
        return evicted

    def get(self, task_id):
        """
        Get a point-in-time copy of a task.

        Returns:
            Task or None if the id is unknown or was evicted
        """
        with self._lock:
            task = self._tasks.get(task_id)
            return replace(task) if task else None

    def update(self, task_id, **fields):
        """
        Merge fields into a task and bump updated_at.

        Status may only move forward along the lifecycle, terminal tasks are
        frozen, and a lower progress value while processing is dropped.

        Returns:
            bool: False if the task is absent or already terminal, or the
            status change is not allowed; True otherwise
        """
        unknown = set(fields) - set(Task.MUTABLE_FIELDS)
        if unknown:
            raise TypeError(f'Cannot update task fields: {", ".join(sorted(unknown))}')

        new_status = fields.get('status')
        if new_status is not None and not TaskStatus.is_valid(new_status):
            raise ValueError(f'Unknown task status: {new_status}')

        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return False

            if task.is_terminal:
                return False

            if new_status is not None and not TaskStatus.can_transition(task.status, new_status):
                return False

            status = new_status or task.status

            if 'progress' in fields:
                progress = fields.pop('progress')
                if progress is not None:
                    progress = max(0, min(100, int(progress)))
                    if (
                        status == TaskStatus.PROCESSING
                        and task.status == TaskStatus.PROCESSING
                        and progress < task.progress
                    ):
                        # Out-of-order signal; keep the last known value
                        progress = task.progress
                    task.progress = progress

            for name, value in fields.items():
                setattr(task, name, value)
            task.updated_at = self._clock()

            logger.debug(
                'Updated task %s: status=%s, progress=%s%%', task_id, task.status, task.progress
            )
            return True

    def delete(self, task_id):
        """Remove a task. Returns False if it was not present."""
        with self._lock:
            removed = self._tasks.pop(task_id, None)
        if removed is not None:
            logger.info('Deleted task %s', task_id)
        return removed is not None

    def clear(self):
        """Remove every task. Returns the number removed."""
        with self._lock:
            count = len(self._tasks)
            self._tasks.clear()
        logger.info('Cleared all %d tasks', count)
        return count

    def list_recent(self, limit=20):
        """
        Get recent results (completed and failed tasks).

        Returns:
            list of Task copies, newest updated_at first, at most `limit`
        """
        with self._lock:
            finished = [replace(task) for task in self._tasks.values() if task.is_terminal]
        finished.sort(key=lambda task: task.updated_at, reverse=True)
        return finished[: max(0, limit)]

    def list_by_status(self, status):
        with self._lock:
            return [replace(task) for task in self._tasks.values() if task.status == status]

    def statistics(self):
        """Counts of tasks per status plus the total"""
        stats = {'total': 0}
        stats.update({status: 0 for status, _label in TaskStatus.CHOICES})
        with self._lock:
            for task in self._tasks.values():
                stats['total'] += 1
                stats[task.status] += 1
        return stats

    def active_count(self):
        """Number of pending or processing tasks"""
        with self._lock:
            return sum(1 for task in self._tasks.values() if not task.is_terminal)

    def sweep(self, now=None):
        """
        Remove terminal tasks whose updated_at is older than the TTL.

        Pending and processing tasks are never removed here, whatever their age.

        Returns:
            list of removed task ids
        """
        now = now or self._clock()
        cutoff = now - self.ttl
        with self._lock:
            expired = [
                task_id
                for task_id, task in self._tasks.items()
                if task.is_terminal and task.updated_at < cutoff
            ]
            for task_id in expired:
                del self._tasks[task_id]

        if expired:
            logger.info('Cleaned up %d old tasks', len(expired))
        return expired

    def __contains__(self, task_id):
        with self._lock:
            return task_id in self._tasks

    def __len__(self):
        with self._lock:
            return len(self._tasks)
