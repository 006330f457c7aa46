"""
TaskTroll Memory - Tasks and Durable Storage

Single JSON file holding tasks, provider settings and pending notifications.
"""

from .task_models import (
    Task,
    TaskState,
    PendingNotification,
    DetectedTask,
    TaskDetectionResult,
    BlameMessageResult,
    create_task,
)
from .task_store import TaskStore, TaskStoreError

__all__ = [
    'Task',
    'TaskState',
    'PendingNotification',
    'DetectedTask',
    'TaskDetectionResult',
    'BlameMessageResult',
    'create_task',
    'TaskStore',
    'TaskStoreError',
]
