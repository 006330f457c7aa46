"""
TaskTroll Agents

Services that combine storage, the completion service and the dispatcher
into user-level operations.
"""

from .reminder_agent import ReminderAgent
from .task_agent import TaskAgent, format_remaining

__all__ = [
    'ReminderAgent',
    'TaskAgent',
    'format_remaining',
]
