"""
TaskTroll LLM Layer

Provider adapter for hosted and local completion services, plus the
normalizer that turns their free-form replies into fixed records.
"""

from .providers import (
    ProviderAdapter,
    CompletionParams,
    CompletionError,
    NetworkError,
    ProviderError,
    ShapeError,
    PROVIDERS,
    REMINDER_PARAMS,
    DETECTION_PARAMS,
    get_provider,
    is_ready,
    provider_ids,
)
from .normalizer import (
    normalize_blame_messages,
    normalize_task_detection,
    pick_reminder,
    is_ascii_only,
)

__all__ = [
    'ProviderAdapter',
    'CompletionParams',
    'CompletionError',
    'NetworkError',
    'ProviderError',
    'ShapeError',
    'PROVIDERS',
    'REMINDER_PARAMS',
    'DETECTION_PARAMS',
    'get_provider',
    'is_ready',
    'provider_ids',
    'normalize_blame_messages',
    'normalize_task_detection',
    'pick_reminder',
    'is_ascii_only',
]
