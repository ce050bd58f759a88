"""
In-memory task records for media conversions.

Tasks are never persisted: the registry in conversions/registry.py owns every
Task for the lifetime of the process.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from django.utils import timezone


class TaskStatus:
    """Task lifecycle: pending -> processing -> completed | failed"""

    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'

    CHOICES = [
        (PENDING, 'Pending'),
        (PROCESSING, 'Processing'),
        (COMPLETED, 'Completed'),
        (FAILED, 'Failed'),
    ]

    TERMINAL = (COMPLETED, FAILED)

    # Allowed next states; a terminal task only ever becomes terminal via processing
    TRANSITIONS = {
        PENDING: (PENDING, PROCESSING),
        PROCESSING: (PROCESSING, COMPLETED, FAILED),
        COMPLETED: (),
        FAILED: (),
    }

    @classmethod
    def is_valid(cls, status):
        return status in cls.TRANSITIONS

    @classmethod
    def can_transition(cls, current, new):
        """
        Check whether a task in `current` may move to `new`.

        Staying in a non-terminal state is allowed (progress updates re-send
        the same status). Nothing leaves a terminal state.
        """
        return new in cls.TRANSITIONS.get(current, ())


class ErrorKind:
    """Failure kinds recorded on tasks or returned to callers"""

    VALIDATION = 'validation'
    DEPENDENCY_MISSING = 'dependency_missing'
    PROCESS_FAILURE = 'process_failure'
    EMPTY_ARTIFACT = 'empty_artifact'
    TIMED_OUT = 'timed_out'
    NOT_FOUND = 'not_found'


@dataclass(frozen=True)
class TaskError:
    """Error kind plus diagnostic text"""

    kind: str
    message: str = ''

    def as_dict(self):
        return {'kind': self.kind, 'message': self.message}


@dataclass
class Task:
    """A tracked conversion request"""

    id: str
    url: str
    requested_quality: str
    status: str = TaskStatus.PENDING
    progress: int = 0
    filename: Optional[str] = None
    artifact_size: Optional[int] = None
    error: Optional[TaskError] = None
    created_at: datetime = field(default_factory=timezone.now)
    updated_at: datetime = field(default_factory=timezone.now)

    # Fields that update() is allowed to change
    MUTABLE_FIELDS = ('status', 'progress', 'filename', 'artifact_size', 'error')

    @property
    def is_terminal(self):
        return self.status in TaskStatus.TERMINAL

    def as_dict(self):
        """Snapshot shape handed to request handlers and the CLI"""
        return {
            'id': self.id,
            'status': self.status,
            'progress': self.progress,
            'url': self.url,
            'quality': self.requested_quality,
            'filename': self.filename,
            'artifact_size': self.artifact_size,
            'error': self.error.as_dict() if self.error else None,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }
