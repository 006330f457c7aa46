"""
TaskTroll - Accountability Task Tracker

Tasks get a short time budget. When it runs out, the tracker nags you
with an AI-written reminder (or a templated one when the AI is off or
failing) until you mark the task done.
"""

__version__ = "1.0.0"
