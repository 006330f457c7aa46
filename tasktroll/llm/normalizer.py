"""
TaskTroll Response Normalizer - Turning Completion Text into Records

The completion service is asked for a fenced JSON object but regularly
returns something else: prose around the JSON, a renamed key, a bare
string, trailing commas, unescaped quotes, or a flat list under an
unexpected key. This module converts any such text into one of two fixed
records:

    normalize_task_detection(raw) -> TaskDetectionResult
    normalize_blame_messages(raw) -> BlameMessageResult

Both are total: they never raise. The text is prepared once (fence
extraction, pre-repair, structural parse), then a fixed sequence of pure
stages is tried in order until one yields candidates:

    1. structure    canonical field, known synonyms, then any list field
    2. direct text  sentence split / bulleted lines / bare task label
    3. field regex  pull a known field's string array out of broken JSON
    4. quoted text  any quoted substring of plausible message length
    5. default      built-in set

Every candidate goes through the same message policy (schema-key
rejection, control character removal, 150 character cap) no matter which
stage produced it.
"""

import json
import logging
import random
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

from tasktroll.memory.task_models import (
    BlameMessageResult,
    DetectedTask,
    TaskDetectionResult,
)
from .prompts import default_blame_messages

logger = logging.getLogger(__name__)


MAX_MESSAGE_LENGTH = 150
ELLIPSIS = "..."
TRUNCATED_LENGTH = MAX_MESSAGE_LENGTH - len(ELLIPSIS)

# Quoted-substring salvage bounds and result size
MIN_SALVAGE_LENGTH = 10
MAX_SALVAGE_RESULTS = 3
MAX_SENTENCES = 3

# Direct-text task heuristic: shorter than this and no paragraph break
MAX_DIRECT_TASK_LENGTH = 100

BLAME_FIELD = "blameMessages"
BLAME_SYNONYMS = ("trollReminders", "reminders", "messages")
TASKS_FIELD = "detectedTasks"
TASK_SYNONYMS = ("tasks", "task")

MESSAGE_KEYS = ("message", "text", "content", "task", "name", "description")
TASK_TEXT_KEYS = ("text", "task", "name", "description", "message", "content")
DEADLINE_KEYS = ("deadline", "due", "dueDate")

# Vocabulary that makes a brace-free reply look like a reminder
REMINDER_KEYWORDS = (
    "task", "deadline", "leetcode", "blame", "todo", "procrastinat",
    "công việc", "làm", "hạn",
)

SCHEMA_KEYS = frozenset(
    (BLAME_FIELD, TASKS_FIELD, "category")
    + BLAME_SYNONYMS
    + TASK_SYNONYMS
)

FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
LEADING_JUNK_PATTERN = re.compile(r"^[^{]*")
TRAILING_JUNK_PATTERN = re.compile(r"[^}]*$")
ADJACENT_QUOTES_PATTERN = re.compile(r'"\s+"')
TRAILING_COMMA_PATTERN = re.compile(r",\s*([\]}])")
SENTENCE_PATTERN = re.compile(r"[^.!?\n]+[.!?]*")
BULLET_PATTERN = re.compile(r"^\s*(?:[-•*]|\d+[.)])\s+(.+)$")
WRAPPING_QUOTES_PATTERN = re.compile(r'^["\']+|["\']+$')
CONTROL_CHARS_PATTERN = re.compile(r"[\x00-\x1F\x7F-\x9F]")
QUOTED_STRING_PATTERN = re.compile(r'"((?:[^"\\]|\\.)*)"')
PLAUSIBLE_QUOTED_PATTERN = re.compile(
    r'"([^"]{%d,%d})"' % (MIN_SALVAGE_LENGTH, MAX_MESSAGE_LENGTH)
)
CATEGORY_PATTERN = re.compile(r'"category"\s*:\s*"((?:[^"\\]|\\.)*)"')
OBJECT_PATTERN = re.compile(r"\{[^{}]*\}")
ASCII_ONLY_PATTERN = re.compile(r"^[A-Za-z\s\d.,!?'\"()\-:;]+$")

_STRUCTURAL_AFTER_CLOSE = ",:]}"


class ParseError(Exception):
    """Raised internally when text cannot be parsed as structured data"""
    pass


# ============================================================================
# Preparation: fence extraction, pre-repair, structural parse
# ============================================================================

def extract_fenced(text: str) -> str:
    """Interior of the first fenced block, or the whole text if there is none."""
    match = FENCE_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def pre_repair(text: str) -> str:
    """
    Heuristic JSON repair.

    - drop everything before the first '{' and after the last '}'
    - insert the missing comma between adjacent quoted tokens
    - drop trailing commas before a closing bracket
    """
    text = LEADING_JUNK_PATTERN.sub("", text)
    text = TRAILING_JUNK_PATTERN.sub("", text)
    text = ADJACENT_QUOTES_PATTERN.sub('", "', text)
    text = TRAILING_COMMA_PATTERN.sub(r"\1", text)
    return text


def escape_inner_quotes(text: str) -> str:
    """
    Escape double quotes that sit inside a string value.

    A quote closes a string only when the next non-space character is
    structural (',', ':', ']', '}') or the end of the text; any other
    quote met inside a string is escaped.
    """
    out = []
    in_string = False
    i = 0
    length = len(text)

    while i < length:
        char = text[i]

        if char == "\\" and in_string and i + 1 < length:
            out.append(text[i:i + 2])
            i += 2
            continue

        if char == '"':
            if not in_string:
                in_string = True
                out.append(char)
            else:
                j = i + 1
                while j < length and text[j].isspace():
                    j += 1
                if j >= length or text[j] in _STRUCTURAL_AFTER_CLOSE:
                    in_string = False
                    out.append(char)
                else:
                    out.append('\\"')
            i += 1
            continue

        out.append(char)
        i += 1

    return "".join(out)


def parse_structured(text: str) -> Any:
    """
    Parse text as JSON, trying progressively repaired variants.

    Raises:
        ParseError: If no variant parses
    """
    repaired = pre_repair(text)
    untrimmed = TRAILING_COMMA_PATTERN.sub(r"\1", text)
    candidates = [text, untrimmed, repaired, escape_inner_quotes(repaired)]

    last_error = None
    seen = set()
    for candidate in candidates:
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        try:
            return json.loads(candidate)
        except (json.JSONDecodeError, RecursionError) as e:
            last_error = e

    raise ParseError(f"No parseable structure: {last_error}")


@dataclass(frozen=True)
class _Prepared:
    """Raw text after fence extraction and a single structural parse attempt"""
    raw: str
    text: str
    parsed: Any
    parsed_ok: bool

    @property
    def has_braces(self) -> bool:
        return "{" in self.text or "}" in self.text


def _prepare(raw_text: Any) -> _Prepared:
    raw = raw_text if isinstance(raw_text, str) else ("" if raw_text is None else str(raw_text))
    text = extract_fenced(raw)
    try:
        parsed = parse_structured(text)
        return _Prepared(raw=raw, text=text, parsed=parsed, parsed_ok=True)
    except ParseError as e:
        logger.debug(f"Structural parse failed: {e}")
        return _Prepared(raw=raw, text=text, parsed=None, parsed_ok=False)


# ============================================================================
# Message policy
# ============================================================================

def truncate_message(message: str) -> str:
    """Cap a message at 150 characters: 147 characters plus '...'."""
    if len(message) > MAX_MESSAGE_LENGTH:
        return message[:TRUNCATED_LENGTH] + ELLIPSIS
    return message


def clean_message(value: Any, field_name: str) -> Optional[str]:
    """
    Apply the message policy to one candidate.

    Returns:
        Cleaned message, or None when the candidate is rejected
    """
    if not isinstance(value, str):
        return None

    message = CONTROL_CHARS_PATTERN.sub("", value).strip()
    message = WRAPPING_QUOTES_PATTERN.sub("", message).strip()

    if not message:
        return None

    # Providers sometimes echo the schema key back as a value
    bare = message.rstrip("\\")
    if bare == field_name or bare in SCHEMA_KEYS:
        return None

    return truncate_message(message)


def apply_message_policy(candidates: Iterable[Any], field_name: str) -> List[str]:
    messages = []
    for candidate in candidates:
        cleaned = clean_message(candidate, field_name)
        if cleaned is not None:
            messages.append(cleaned)
    return messages


def _coerce_message(item: Any) -> Optional[str]:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        for key in MESSAGE_KEYS:
            value = item.get(key)
            if isinstance(value, str) and value.strip():
                return value
    return None


def _coerce_messages(items: Sequence[Any]) -> List[str]:
    return [m for m in (_coerce_message(item) for item in items) if m is not None]


def _unescape(value: str) -> str:
    try:
        return json.loads(f'"{value}"')
    except json.JSONDecodeError:
        return value


# ============================================================================
# Blame message stages
# ============================================================================

def _blame_from_structure(prepared: _Prepared) -> Optional[List[str]]:
    if not prepared.parsed_ok:
        return None

    parsed = prepared.parsed
    if isinstance(parsed, str):
        return [parsed]
    if isinstance(parsed, list):
        return _coerce_messages(parsed) or None
    if not isinstance(parsed, dict):
        return None

    for key in (BLAME_FIELD,) + BLAME_SYNONYMS:
        if key not in parsed:
            continue
        value = parsed[key]
        if isinstance(value, str):
            logger.debug(f"Found '{key}' as a string value")
            return [value]
        if isinstance(value, list):
            messages = _coerce_messages(value)
            if messages:
                return messages

    # Last resort: any list-valued field whose elements look like messages
    for key, value in parsed.items():
        if isinstance(value, list):
            messages = _coerce_messages(value)
            if messages:
                logger.info(f"Found messages in unexpected field '{key}'")
                return messages

    return None


def _bulleted_lines(text: str) -> List[str]:
    lines = []
    for line in text.splitlines():
        match = BULLET_PATTERN.match(line)
        if match:
            lines.append(match.group(1).strip())
    return lines


def _blame_from_direct_text(prepared: _Prepared) -> Optional[List[str]]:
    if prepared.parsed_ok or prepared.has_braces:
        return None

    bullets = _bulleted_lines(prepared.text)
    if bullets:
        logger.info("Extracted messages from bulleted lines")
        return bullets

    lowered = prepared.text.lower()
    if not any(keyword in lowered for keyword in REMINDER_KEYWORDS):
        return None

    sentences = [s.strip() for s in SENTENCE_PATTERN.findall(prepared.text)]
    sentences = [s for s in sentences if len(s) > MIN_SALVAGE_LENGTH]
    if sentences:
        logger.info("Converted plain reminder text into sentence messages")
    return sentences[:MAX_SENTENCES] or None


def _array_strings(text: str, field_name: str) -> List[str]:
    pattern = re.compile(r'"%s"\s*:\s*\[([\s\S]*?)\]' % re.escape(field_name))
    match = pattern.search(text)
    if not match:
        return []
    return [_unescape(s) for s in QUOTED_STRING_PATTERN.findall(match.group(1))]


def _blame_from_field_pattern(prepared: _Prepared) -> Optional[List[str]]:
    for field_name in (BLAME_FIELD,) + BLAME_SYNONYMS:
        messages = _array_strings(prepared.text, field_name)
        if messages:
            logger.info(f"Extracted '{field_name}' array with regex salvage")
            return messages
    return None


def _blame_from_quoted_strings(prepared: _Prepared) -> Optional[List[str]]:
    matches = [
        m for m in PLAUSIBLE_QUOTED_PATTERN.findall(prepared.text)
        if m.strip() not in SCHEMA_KEYS
    ]
    if matches:
        logger.info("Extracted quoted strings that look like messages")
    return matches[:MAX_SALVAGE_RESULTS] or None


BLAME_STAGES: Tuple[Callable[[_Prepared], Optional[List[str]]], ...] = (
    _blame_from_structure,
    _blame_from_direct_text,
    _blame_from_field_pattern,
    _blame_from_quoted_strings,
)


def _run_blame_stages(prepared: _Prepared) -> Optional[List[str]]:
    for stage in BLAME_STAGES:
        candidates = stage(prepared)
        if not candidates:
            continue
        messages = apply_message_policy(candidates, BLAME_FIELD)
        if messages:
            logger.debug(f"{stage.__name__} produced {len(messages)} messages")
            return messages
        logger.info(f"All {len(candidates)} candidates from {stage.__name__} were rejected")
        return None
    return None


def normalize_blame_messages(
    raw_text: Any,
    defaults: Optional[Sequence[str]] = None,
) -> BlameMessageResult:
    """
    Convert raw completion text into a non-empty list of reminder messages.

    Never raises. When nothing usable can be extracted, the default set
    is returned.

    Args:
        raw_text: Completion text of unknown shape
        defaults: Fallback reminder set (default: English built-in set)

    Returns:
        BlameMessageResult with at least one message
    """
    fallback = list(defaults) if defaults else default_blame_messages("en")

    try:
        messages = _run_blame_stages(_prepare(raw_text))
    except Exception as e:
        logger.error(f"Unexpected error normalizing blame messages: {e}", exc_info=True)
        messages = None

    if not messages:
        logger.warning("Failed to extract blame messages, using defaults")
        return BlameMessageResult(blame_messages=fallback)

    return BlameMessageResult(blame_messages=messages)


# ============================================================================
# Task detection stages
# ============================================================================

def _clean_deadline(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, str):
        value = str(value)
    value = value.strip()
    if not value or value.lower() in ("null", "none", "undefined", "n/a"):
        return None
    return value


def _coerce_task(item: Any) -> Optional[DetectedTask]:
    if isinstance(item, str):
        return DetectedTask(text=item)
    if not isinstance(item, dict):
        return None

    text = None
    for key in TASK_TEXT_KEYS:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            text = value
            break
    if text is None:
        return None

    deadline = None
    for key in DEADLINE_KEYS:
        deadline = _clean_deadline(item.get(key))
        if deadline:
            break
    return DetectedTask(text=text, deadline=deadline)


def _coerce_tasks(value: Any) -> List[DetectedTask]:
    if isinstance(value, (str, dict)):
        value = [value]
    if not isinstance(value, list):
        return []
    return [t for t in (_coerce_task(item) for item in value) if t is not None]


def apply_task_policy(candidates: Iterable[DetectedTask]) -> List[DetectedTask]:
    tasks = []
    for candidate in candidates:
        text = clean_message(candidate.text, TASKS_FIELD)
        if text is None:
            continue
        tasks.append(DetectedTask(text=text, deadline=_clean_deadline(candidate.deadline)))
    return tasks


def _category_of(parsed: dict) -> str:
    category = parsed.get("category")
    if isinstance(category, str) and category.strip():
        return category.strip()
    return "general"


def _tasks_from_structure(prepared: _Prepared) -> Optional[TaskDetectionResult]:
    if not prepared.parsed_ok:
        return None

    parsed = prepared.parsed
    if isinstance(parsed, str):
        return TaskDetectionResult(detected_tasks=apply_task_policy([DetectedTask(parsed)]))
    if isinstance(parsed, list):
        return TaskDetectionResult(detected_tasks=apply_task_policy(_coerce_tasks(parsed)))
    if not isinstance(parsed, dict):
        return None

    category = _category_of(parsed)
    recognized = "category" in parsed

    for key in (TASKS_FIELD,) + TASK_SYNONYMS:
        if key not in parsed:
            continue
        recognized = True
        tasks = apply_task_policy(_coerce_tasks(parsed[key]))
        if tasks:
            return TaskDetectionResult(category=category, detected_tasks=tasks)

    # A single task returned directly as the object itself
    single = _coerce_task(parsed) if any(k in parsed for k in ("text", "task")) else None
    if single is not None:
        tasks = apply_task_policy([single])
        if tasks:
            return TaskDetectionResult(category=category, detected_tasks=tasks)

    for key, value in parsed.items():
        if isinstance(value, list):
            tasks = apply_task_policy(_coerce_tasks(value))
            if tasks:
                logger.info(f"Found tasks in unexpected field '{key}'")
                return TaskDetectionResult(category=category, detected_tasks=tasks)

    if recognized:
        # Well-formed answer that simply detected nothing
        return TaskDetectionResult(category=category, detected_tasks=[])
    return None


def _tasks_from_direct_text(prepared: _Prepared) -> Optional[TaskDetectionResult]:
    if prepared.parsed_ok or prepared.has_braces:
        return None

    text = prepared.text.strip()
    if not text or len(text) >= MAX_DIRECT_TASK_LENGTH or "\n\n" in text:
        return None

    tasks = apply_task_policy([DetectedTask(text=text)])
    if not tasks:
        return None
    logger.info("Using reply text directly as a task")
    return TaskDetectionResult(detected_tasks=tasks)


def _tasks_from_field_pattern(prepared: _Prepared) -> Optional[TaskDetectionResult]:
    text = prepared.text
    category_match = CATEGORY_PATTERN.search(text)
    category = _unescape(category_match.group(1)) if category_match else "general"

    candidates = []
    for obj in OBJECT_PATTERN.findall(text):
        fields = dict(
            (key, _unescape(value))
            for key, value in re.findall(r'"(\w+)"\s*:\s*"((?:[^"\\]|\\.)*)"', obj)
        )
        task = _coerce_task(fields)
        if task is not None and any(k in fields for k in TASK_TEXT_KEYS):
            candidates.append(task)

    if not candidates:
        for field_name in (TASKS_FIELD,) + TASK_SYNONYMS:
            strings = _array_strings(text, field_name)
            if strings:
                candidates = [DetectedTask(text=s) for s in strings]
                break

    tasks = apply_task_policy(candidates)
    if not tasks:
        return None
    logger.info(f"Extracted {len(tasks)} tasks with regex salvage")
    return TaskDetectionResult(category=category, detected_tasks=tasks)


TASK_STAGES: Tuple[Callable[[_Prepared], Optional[TaskDetectionResult]], ...] = (
    _tasks_from_structure,
    _tasks_from_direct_text,
    _tasks_from_field_pattern,
)


def normalize_task_detection(raw_text: Any) -> TaskDetectionResult:
    """
    Convert raw completion text into a TaskDetectionResult.

    Never raises. The result always has a category string; detected tasks
    may be empty.
    """
    try:
        prepared = _prepare(raw_text)
        for stage in TASK_STAGES:
            result = stage(prepared)
            if result is not None:
                logger.debug(
                    f"{stage.__name__} produced {len(result.detected_tasks)} tasks "
                    f"(category={result.category})"
                )
                return result
    except Exception as e:
        logger.error(f"Unexpected error normalizing task detection: {e}", exc_info=True)

    logger.warning("No tasks could be extracted from the reply")
    return TaskDetectionResult(category="general", detected_tasks=[])


# ============================================================================
# Final pick
# ============================================================================

def is_ascii_only(message: str) -> bool:
    """True when a message is made only of ASCII letters, digits and punctuation."""
    return bool(ASCII_ONLY_PATTERN.match(message))


def pick_reminder(
    messages: Sequence[str],
    defaults: Sequence[str],
    reject_ascii_only: bool = False,
    rng: Optional[random.Random] = None,
) -> str:
    """
    Choose the one message that will be shown.

    Args:
        messages: Normalized reminder messages (non-empty)
        defaults: Default set used when the pick is rejected
        reject_ascii_only: Treat ASCII-only picks as low confidence and
            replace them with a default pick (for non-English locales)
        rng: Random source, injected for testability

    Returns:
        Reminder text
    """
    rng = rng or random.Random()
    pool = list(messages) or list(defaults)
    choice = rng.choice(pool)

    if reject_ascii_only and is_ascii_only(choice):
        logger.info(f"Reminder looks English-only, using a default instead: {choice!r}")
        return rng.choice(list(defaults))

    return choice
