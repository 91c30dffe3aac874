"""
Slot model for the task record filled in over a conversation.

Declares which fields are required, the question and option chips shown for
each field, and the option label -> value tables used to resolve a chip
without calling the LLM.
"""
import re
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Optional

from models import TaskCreate, TaskInfo
from time_utils import (
    SLOT_NAMES,
    combine_date_and_time,
    create_deadline_datetime,
    format_clock,
    format_date,
    get_jst_now,
    parse_relative_date,
)


class TaskField(str, Enum):
    TITLE = "title"
    CATEGORY = "category"
    DEADLINE = "deadline"
    SCHEDULED_DATE = "scheduledDate"
    SCHEDULED_TIME = "scheduledTime"
    DURATION_MINUTES = "durationMinutes"

    @property
    def attr(self) -> str:
        """Attribute name on TaskInfo."""
        return re.sub(r"(?<!^)(?=[A-Z])", "_", self.value).lower()

    @classmethod
    def parse(cls, name: Optional[str]) -> Optional["TaskField"]:
        if not name:
            return None
        try:
            return cls(name)
        except ValueError:
            return None


REQUIRED_FIELDS = [TaskField.TITLE, TaskField.CATEGORY]
OPTIONAL_FIELDS = [
    TaskField.DEADLINE,
    TaskField.SCHEDULED_DATE,
    TaskField.SCHEDULED_TIME,
    TaskField.DURATION_MINUTES,
]

CATEGORIES = ["shopping", "reply", "work", "personal", "other"]

# Control chips
CONFIRM = "登録する"
DECLINE = "登録しない"
REGISTER_ANYWAY = "とりあえず登録"
SKIP = "スキップ"
CONTROL_COMMANDS = [CONFIRM, DECLINE, REGISTER_ANYWAY, SKIP]
CONFIRM_OPTIONS = [CONFIRM, DECLINE]

# Placeholder titles the model sometimes emits instead of a real action
INVALID_TITLES = [None, "", "タイトル未定", "（タイトル未定）", "タイトルなし"]

FIELD_LABELS = {
    TaskField.TITLE: {
        "label": "タイトル",
        "question": "タスクの内容を教えてください",
        "options": [],
    },
    TaskField.CATEGORY: {
        "label": "カテゴリ",
        "question": "このタスクのカテゴリは？",
        "options": ["買い物", "返信", "仕事", "個人", "その他"],
    },
    TaskField.DEADLINE: {
        "label": "期限",
        "question": "いつまでに完了させますか？",
        "options": ["今日", "明日", "今週中", "来週", "期限なし"],
    },
    TaskField.SCHEDULED_DATE: {
        "label": "実行予定日",
        "question": "いつ実行する予定ですか？",
        "options": ["今日", "明日", "今週中", "来週", "未定"],
    },
    TaskField.SCHEDULED_TIME: {
        "label": "実行時間",
        "question": "何時頃に実行しますか？",
        "options": ["午前中", "昼", "午後", "夜", "指定しない"],
    },
    TaskField.DURATION_MINUTES: {
        "label": "所要時間",
        "question": "どのくらいの時間がかかりそう？",
        "options": ["15分", "30分", "1時間", "2時間以上", "不明"],
    },
}

CATEGORY_OPTIONS = {
    "買い物": "shopping",
    "返信": "reply",
    "仕事": "work",
    "個人": "personal",
    "その他": "other",
}

TIME_SLOT_OPTIONS = {
    "午前中": "morning",
    "昼": "noon",
    "午後": "afternoon",
    "夜": "evening",
}

DURATION_OPTIONS = {
    "15分": 15,
    "30分": 30,
    "1時間": 60,
    "2時間以上": 120,
    "不明": None,
}

NO_VALUE_OPTIONS = ("未定", "指定しない")


def is_valid_title(title: Optional[str]) -> bool:
    """False for empty or placeholder titles (exact or contained)."""
    if not title:
        return False
    trimmed = title.strip()
    if not trimmed:
        return False
    for invalid in INVALID_TITLES:
        # "" would match every title through `in`
        if not invalid:
            continue
        if trimmed == invalid or invalid in trimmed:
            return False
    return True


def is_task_complete(info: TaskInfo) -> bool:
    """Registrable: valid title and a category. Everything else is optional."""
    return is_valid_title(info.title) and info.category is not None


def get_value(info: TaskInfo, field: TaskField):
    return getattr(info, field.attr)


def get_next_missing_field(
    info: TaskInfo,
    is_initial: bool = False,
    resolved: Iterable[str] = (),
) -> Optional[str]:
    """
    Name of the next field to ask about, or None.

    Required fields are always checked first. Optional fields are only
    scanned when `is_initial` is False. Fields listed in `resolved` were
    already answered (possibly with "none") and are not asked again, unless
    they are required and still empty.
    """
    for field in REQUIRED_FIELDS:
        if not get_value(info, field):
            return field.value

    if is_initial:
        return None

    answered = set(resolved)
    for field in OPTIONAL_FIELDS:
        if field.value in answered:
            continue
        if not get_value(info, field):
            return field.value

    return None


def get_field_options(field_name: Optional[str]) -> list[str]:
    field = TaskField.parse(field_name)
    if field is None:
        return []
    return list(FIELD_LABELS[field]["options"])


def generate_question(field_name: Optional[str]) -> Optional[str]:
    if not field_name:
        return None
    field = TaskField.parse(field_name)
    if field is None:
        return f"{field_name}を教えてください"
    return FIELD_LABELS[field]["question"]


def apply_patch(info: TaskInfo, field_name: str, value) -> TaskInfo:
    """Return a copy of `info` with one field replaced. Unknown fields raise ValueError."""
    field = TaskField.parse(field_name)
    if field is None:
        raise ValueError(f"Unknown task field: {field_name}")
    return TaskInfo.model_validate({**info.model_dump(), field.attr: value})


def to_task_create(info: TaskInfo, raw_input: Optional[str] = None) -> TaskCreate:
    """Payload for the repository; scheduled date/time collapse into scheduled_at."""
    return TaskCreate(
        title=(info.title or "").strip(),
        category=info.category or "other",
        deadline=info.deadline,
        scheduled_at=combine_date_and_time(info.scheduled_date, info.scheduled_time),
        duration_minutes=info.duration_minutes,
        raw_input=raw_input,
    )


# Option label -> field value

def map_option_to_field_value(option: str, field_name: Optional[str], base: Optional[datetime] = None) -> tuple:
    """
    Resolve a chip label for `field_name`.

    Returns (value, success). success is False when the label is not one of
    the field's known options; value may legitimately be None on success
    (e.g. "期限なし").
    """
    field = TaskField.parse(field_name)
    if field == TaskField.CATEGORY:
        return _map_category_option(option)
    if field == TaskField.DEADLINE:
        return _map_deadline_option(option, base)
    if field == TaskField.SCHEDULED_DATE:
        return _map_scheduled_date_option(option, base)
    if field == TaskField.SCHEDULED_TIME:
        return _map_scheduled_time_option(option)
    if field == TaskField.DURATION_MINUTES:
        return _map_duration_option(option)
    return None, False


def _map_category_option(option: str) -> tuple:
    value = CATEGORY_OPTIONS.get(option)
    return value, value is not None


def _map_deadline_option(option: str, base: Optional[datetime]) -> tuple:
    now = base or get_jst_now()
    if option == "期限なし":
        return None, True
    if option in ("今日", "明日", "今週中"):
        relative = parse_relative_date(option, now)
        return create_deadline_datetime(format_date(relative["date"])), True
    if option == "来週":
        # Friday of next week
        target = now + timedelta(days=7 + (4 - now.weekday()))
        return create_deadline_datetime(format_date(target)), True
    return None, False


def _map_scheduled_date_option(option: str, base: Optional[datetime]) -> tuple:
    if option in NO_VALUE_OPTIONS:
        return None, True
    if option in ("今日", "明日", "今週中", "来週"):
        relative = parse_relative_date(option, base or get_jst_now())
        return format_date(relative["date"]), True
    return None, False


def _map_scheduled_time_option(option: str) -> tuple:
    if option in TIME_SLOT_OPTIONS:
        return TIME_SLOT_OPTIONS[option], True
    if option in SLOT_NAMES:
        return option, True

    match = re.match(r"^(\d{1,2}):(\d{2})$", option)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if 0 <= hour <= 23 and 0 <= minute <= 59:
            return format_clock(hour, minute), True

    if option in NO_VALUE_OPTIONS:
        return None, True
    return None, False


def _map_duration_option(option: str) -> tuple:
    if option in DURATION_OPTIONS:
        return DURATION_OPTIONS[option], True
    return None, False
