"""
TaskTroll Task Models

Data structures for tasks, pending notifications and the two records
produced by the response normalization engine.

Lifecycle of a task:
    OPEN -> EXPIRED     (scheduler, exactly once, terminal unless deleted)
    OPEN -> COMPLETED   (user, any time before expiry)
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional
import uuid


def to_local_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Offset-aware datetimes become naive local time; naive ones pass through."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


class TaskState(Enum):
    """Derived accountability state of a task"""
    OPEN = "open"
    EXPIRED = "expired"
    COMPLETED = "completed"


@dataclass
class Task:
    """
    A unit of accountability.

    deadline and category are descriptive only; they never block completion.
    due_date, when set, replaces the timebox as the expiry instant.
    """
    id: str
    text: str
    created: datetime
    completed: bool = False
    category: str = "general"
    deadline: Optional[str] = None
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    custom_reminders: Optional[List[str]] = None
    time_expired: bool = False
    remaining_seconds: Optional[float] = None

    def __post_init__(self):
        """Validate task data"""
        if not self.id:
            raise ValueError("Task ID cannot be empty")
        if not self.text or not self.text.strip():
            raise ValueError("Task text cannot be empty")
        if not isinstance(self.created, datetime):
            raise TypeError("created must be datetime")
        if self.due_date is not None and not isinstance(self.due_date, datetime):
            raise TypeError("due_date must be datetime")
        self.created = to_local_naive(self.created)
        self.due_date = to_local_naive(self.due_date)
        self.completed_at = to_local_naive(self.completed_at)
        if not self.category:
            self.category = "general"

    @property
    def state(self) -> TaskState:
        if self.completed:
            return TaskState.COMPLETED
        if self.time_expired:
            return TaskState.EXPIRED
        return TaskState.OPEN

    @property
    def is_open(self) -> bool:
        return self.state == TaskState.OPEN

    def expiry_at(self, timebox: timedelta) -> datetime:
        """Absolute due date if one was set, otherwise created + timebox"""
        if self.due_date is not None:
            return self.due_date
        return self.created + timebox

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict"""
        return {
            'id': self.id,
            'text': self.text,
            'created': self.created.isoformat(),
            'completed': self.completed,
            'category': self.category,
            'deadline': self.deadline,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'custom_reminders': self.custom_reminders,
            'time_expired': self.time_expired,
            'remaining_seconds': self.remaining_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Task':
        """Create Task from dict"""
        due_date = data.get('due_date')
        completed_at = data.get('completed_at')
        return cls(
            id=data['id'],
            text=data['text'],
            created=datetime.fromisoformat(data['created']),
            completed=bool(data.get('completed', False)),
            category=data.get('category') or "general",
            deadline=data.get('deadline'),
            due_date=datetime.fromisoformat(due_date) if due_date else None,
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
            custom_reminders=data.get('custom_reminders'),
            time_expired=bool(data.get('time_expired', False)),
            remaining_seconds=data.get('remaining_seconds'),
        )


@dataclass
class PendingNotification:
    """An alert waiting to be shown by the user interface"""
    message: str
    timestamp: datetime
    task_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'message': self.message,
            'timestamp': self.timestamp.isoformat(),
            'taskId': self.task_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'PendingNotification':
        return cls(
            message=data['message'],
            timestamp=datetime.fromisoformat(data['timestamp']),
            task_id=data.get('taskId'),
        )


@dataclass
class DetectedTask:
    """One task descriptor found in a detection response"""
    text: str
    deadline: Optional[str] = None


@dataclass
class TaskDetectionResult:
    """Category plus zero or more detected tasks. Never persisted."""
    category: str = "general"
    detected_tasks: List[DetectedTask] = field(default_factory=list)

    def __post_init__(self):
        if not isinstance(self.category, str) or not self.category.strip():
            self.category = "general"


@dataclass
class BlameMessageResult:
    """Ordered, non-empty sequence of reminder strings"""
    blame_messages: List[str]

    def __post_init__(self):
        if not self.blame_messages:
            raise ValueError("BlameMessageResult requires at least one message")


def create_task(
    text: str,
    category: str = "general",
    deadline: Optional[str] = None,
    due_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Task:
    """
    Factory function to create a new open task.

    Args:
        text: Display text
        category: Category label (default "general")
        deadline: Free-text deadline, descriptive only
        due_date: Absolute expiry instant (overrides the timebox)
        now: Creation time (default: datetime.now()), injected for testability

    Returns:
        New Task in OPEN state
    """
    return Task(
        id=str(uuid.uuid4()),
        text=text.strip(),
        created=now or datetime.now(),
        category=category or "general",
        deadline=deadline,
        due_date=due_date,
    )
