"""
TaskTroll Prompts and Locale Strings

Prompt templates sent to the completion service, the built-in default
reminder sets, and the few user-facing strings that depend on locale.
"""

from typing import Dict, List, Optional, Tuple

TASK_DETECTION_PROMPT = {
    "en": """You are a task detection assistant.

- Find the tasks mentioned in the user's message
- Extract a deadline when one is mentioned ("tomorrow", "next week", a date)
- Pick one category (work, personal, health, study, general)

Reply ONLY with JSON in this exact shape:
{
  "category": "task category",
  "detectedTasks": [
    {"text": "task without the time part", "deadline": "deadline or null"}
  ]
}""",
    "vi": """Bạn là trợ lý phát hiện công việc.

- Tìm các công việc trong tin nhắn của người dùng
- Trích xuất thời hạn nếu có ("ngày mai", "tuần sau", ngày cụ thể)
- Chọn một loại (công việc, cá nhân, sức khỏe, học tập, general)

Tất cả phản hồi PHẢI bằng tiếng Việt. Chỉ trả lời bằng JSON:
{
  "category": "loại công việc",
  "detectedTasks": [
    {"text": "công việc, không bao gồm thời gian", "deadline": "thời hạn hoặc null"}
  ]
}""",
}

BLAME_MESSAGE_PROMPT = {
    "en": """You are a tough-love mentor who nags people about overdue tasks.
Write short, punchy reminders (under 100 characters each) that name the task
directly and mention one concrete consequence of not doing it.

Reply ONLY with JSON. The key MUST be "blameMessages":
{
  "blameMessages": ["message 1", "message 2", "message 3"]
}""",
    "vi": """Bạn là "Người Anh Cả", một mentor khó tính nhưng muốn đàn em thành công.
Viết lời nhắc ngắn (dưới 100 ký tự), nhắc trực tiếp tên công việc và nêu một
hậu quả cụ thể nếu không làm. Các tin nhắn PHẢI bằng tiếng Việt.

Chỉ trả lời bằng JSON. Key PHẢI là "blameMessages":
{
  "blameMessages": ["tin nhắn 1", "tin nhắn 2", "tin nhắn 3"]
}""",
}

DEFAULT_BLAME_MESSAGES: Dict[str, Tuple[str, ...]] = {
    "en": (
        "🕒 Task due soon!",
        "⏰ Don't forget this task!",
        "⚠️ Task pending!",
        "📌 Reminder: complete this!",
        "🔔 Task needs attention!",
        "💭 Don't forget this one!",
        "📢 This task is waiting!",
        "⏱️ Tick tock...",
        "🎯 Focus on this task!",
    ),
    "vi": (
        "⚠️ Công việc của bạn đã quá hạn!",
        "⏰ Bạn đã không hoàn thành công việc đúng hạn.",
        "🔥 Thời gian đã hết! Công việc chưa hoàn thành.",
        "😱 Bạn đã trễ hạn cho công việc này rồi!",
    ),
}

# "<deadline-passed> for task: <text>"
DEADLINE_PASSED_TEMPLATE = {
    "en": '⏰ Time\'s up for task: "{text}"',
    "vi": '⏰ Hết giờ cho công việc: "{text}"',
}

NOTIFICATION_TITLE = {
    "en": "Task Alert",
    "vi": "Nhắc việc",
}

# Verbs that mark a message as a task without asking the completion service
ACTION_VERBS = {
    "en": ("do", "buy", "read", "write", "call", "finish", "submit", "send", "prepare", "study"),
    "vi": ("làm", "học", "đọc", "viết", "xem", "mua", "đi", "nộp", "hoàn thành", "gửi", "chuẩn bị"),
}

# Ordered (keyword, deadline label) pairs; first match wins
TIME_KEYWORDS = {
    "en": (
        ("right now", "Today"),
        ("today", "Today"),
        ("tonight", "Today"),
        ("tomorrow", "Tomorrow"),
        ("next week", "Next week"),
    ),
    "vi": (
        ("ngày mai", "Ngày mai"),
        ("tuần sau", "Tuần sau"),
        ("hôm nay", "Hôm nay"),
        ("bây giờ", "Hôm nay"),
        ("ngay", "Hôm nay"),
    ),
}


def default_blame_messages(locale: str = "en") -> List[str]:
    """Built-in reminder set for a locale (English when unknown)."""
    return list(DEFAULT_BLAME_MESSAGES.get(locale, DEFAULT_BLAME_MESSAGES["en"]))


def format_task_detection_prompt(message: str) -> str:
    return (
        f'Analyze this message for tasks: "{message}".\n'
        "If it is a task added directly, treat it as a single task.\n"
        "If it is conversation, detect any tasks hidden in it.\n"
        "Split each task into the task itself (without the time) and its deadline.\n"
        "Reply in the JSON format specified."
    )


def format_blame_prompt(text: str, category: str = "general", deadline: Optional[str] = None) -> str:
    lines = [
        "Create short reminder messages for this overdue task:",
        f"- Task: {text}",
        f"- Category: {category or 'general'}",
    ]
    if deadline:
        lines.append(f"- Deadline: {deadline}")
    lines.append("")
    lines.append(f'Each message must be under 100 characters and mention "{text}" directly.')
    lines.append("Create exactly 3 different messages.")
    lines.append('Reply in JSON: {"blameMessages": ["message 1", "message 2", "message 3"]}')
    return "\n".join(lines)


def deadline_passed_message(text: str, locale: str = "en") -> str:
    template = DEADLINE_PASSED_TEMPLATE.get(locale, DEADLINE_PASSED_TEMPLATE["en"])
    return template.format(text=text)
