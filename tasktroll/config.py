"""
TaskTroll Configuration

Two configuration values are threaded explicitly through the system:

- AIConfig: which completion provider to use and with which key.
  Persisted in the store under the "aiConfig" record.
- TrackerConfig: timebox, tick intervals, timeouts and locale policy.
  Built once at process start from the environment.

Nothing here is read as ambient global state by the components themselves.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".tasktroll"
DEFAULT_STORAGE_FILE = CONFIG_DIR / "tasktroll.json"
DEFAULT_LOG_DIR = CONFIG_DIR / "logs"

DEFAULT_PROVIDER = "openrouter"

SUPPORTED_LOCALES = ("en", "vi")


def load_env_file(env_path: Optional[Path] = None) -> bool:
    """Load environment variables from a .env file if one exists."""
    if env_path is None:
        env_path = Path.cwd() / ".env"
    if not env_path.exists():
        return False
    load_dotenv(env_path)
    logger.debug(f"Loaded environment from {env_path}")
    return True


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AIConfig:
    """Completion provider settings, as stored by the settings form."""
    provider: Optional[str] = None
    api_key: str = ""
    enabled: bool = False
    auto_detect_tasks: bool = False
    endpoint: str = ""
    model: str = ""

    def __post_init__(self):
        # A missing provider falls back to the default provider
        if not self.provider:
            self.provider = DEFAULT_PROVIDER

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted camelCase record"""
        return {
            'provider': self.provider,
            'apiKey': self.api_key,
            'enabled': self.enabled,
            'autoDetectTasks': self.auto_detect_tasks,
            'endpoint': self.endpoint,
            'model': self.model,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AIConfig':
        """Create AIConfig from the persisted record"""
        return cls(
            provider=data.get('provider'),
            api_key=data.get('apiKey') or "",
            enabled=bool(data.get('enabled', False)),
            auto_detect_tasks=bool(data.get('autoDetectTasks', False)),
            endpoint=data.get('endpoint') or "",
            model=data.get('model') or "",
        )

    @classmethod
    def from_env(cls) -> 'AIConfig':
        """Build AIConfig from TASKTROLL_* environment variables."""
        api_key = os.environ.get("TASKTROLL_API_KEY", "")
        return cls(
            provider=os.environ.get("TASKTROLL_PROVIDER") or None,
            api_key=api_key,
            enabled=_env_flag("TASKTROLL_AI_ENABLED", bool(api_key)),
            auto_detect_tasks=_env_flag("TASKTROLL_AUTO_DETECT", False),
            endpoint=os.environ.get("TASKTROLL_ENDPOINT", ""),
            model=os.environ.get("TASKTROLL_MODEL", ""),
        )


@dataclass
class TrackerConfig:
    """
    Runtime settings for the accountability loop.

    Attributes:
        storage_path: JSON file holding tasks, aiConfig and pending notifications
        timebox_seconds: Time budget of a task without an absolute due date
        live_tick_seconds: Scheduler interval while the interactive UI is open
        background_tick_seconds: Scheduler interval in background mode
        reminder_timeout: Seconds before a reminder completion is abandoned
        detection_timeout: Seconds before a task detection completion is abandoned
        locale: Language of prompts, default reminders and templated messages
        reject_ascii_reminders: Replace ASCII-only AI reminders with a default pick
        log_dir: Directory for the rotating log file
    """
    storage_path: Path = DEFAULT_STORAGE_FILE
    timebox_seconds: float = 10.0
    live_tick_seconds: float = 1.0
    background_tick_seconds: float = 60.0
    reminder_timeout: float = 20.0
    detection_timeout: float = 15.0
    locale: str = "en"
    reject_ascii_reminders: bool = False
    log_dir: Path = field(default=DEFAULT_LOG_DIR)

    def __post_init__(self):
        if self.locale not in SUPPORTED_LOCALES:
            raise ValueError(
                f"Unsupported locale '{self.locale}'. "
                f"Must be one of: {list(SUPPORTED_LOCALES)}"
            )
        if self.timebox_seconds <= 0:
            raise ValueError(f"timebox_seconds must be positive, got {self.timebox_seconds}")
        if self.live_tick_seconds <= 0 or self.background_tick_seconds <= 0:
            raise ValueError("tick intervals must be positive")

    @classmethod
    def from_env(cls) -> 'TrackerConfig':
        """Build TrackerConfig from TASKTROLL_* environment variables."""
        locale = os.environ.get("TASKTROLL_LOCALE", "en").strip().lower()
        storage = os.environ.get("TASKTROLL_STORAGE")
        log_dir = os.environ.get("TASKTROLL_LOG_DIR")

        return cls(
            storage_path=Path(storage) if storage else DEFAULT_STORAGE_FILE,
            timebox_seconds=float(os.environ.get("TASKTROLL_TIMEBOX_SECONDS", "10")),
            live_tick_seconds=float(os.environ.get("TASKTROLL_LIVE_TICK", "1")),
            background_tick_seconds=float(os.environ.get("TASKTROLL_BACKGROUND_TICK", "60")),
            reminder_timeout=float(os.environ.get("TASKTROLL_REMINDER_TIMEOUT", "20")),
            detection_timeout=float(os.environ.get("TASKTROLL_DETECTION_TIMEOUT", "15")),
            locale=locale,
            # The ASCII-only heuristic only makes sense for non-English output
            reject_ascii_reminders=_env_flag("TASKTROLL_REJECT_ASCII", locale != "en"),
            log_dir=Path(log_dir) if log_dir else DEFAULT_LOG_DIR,
        )
