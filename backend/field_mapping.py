"""
Selection resolver: maps a chosen chip (or short typed answer) onto a field.

Pure functions only. The conversation applies the returned field/value.
"""
import re
from datetime import datetime
from typing import Iterable, Optional

from models import FieldMappingResult, TaskInfo
from task_fields import (
    DECLINE,
    FIELD_LABELS,
    REGISTER_ANYWAY,
    SKIP,
    TaskField,
    apply_patch,
    generate_question,
    get_field_options,
    get_next_missing_field,
    is_task_complete,
    map_option_to_field_value,
)
from time_utils import format_clock, parse_time_from_input

UNIVERSAL_OPTIONS = [SKIP, REGISTER_ANYWAY]

# Time expressions stripped when deriving a title without the LLM
TITLE_TIME_PATTERNS = [
    re.compile(p) for p in (
        r"明後日", r"明日", r"今日", r"昨日", r"来週", r"今週",
        r"\d{1,2}時(?:\d{1,2}分?)?", r"\d{1,2}:\d{2}",
        r"午前", r"午後", r"朝", r"昼", r"夜",
    )
]


def _failed(action: Optional[str] = None) -> FieldMappingResult:
    return FieldMappingResult(success=False, field=None, value=None, next_field=None, action=action)


def _resolved(field: TaskField, value, info: TaskInfo, resolved: Iterable[str]) -> FieldMappingResult:
    updated = apply_patch(info, field.value, value)
    answered = set(resolved) | {field.value}
    return FieldMappingResult(
        success=True,
        field=field.value,
        value=value,
        next_field=get_next_missing_field(updated, False, answered),
    )


def map_selection_to_field(
    option: str,
    current_field: Optional[str],
    current_task_info: TaskInfo,
    resolved: Iterable[str] = (),
    base: Optional[datetime] = None,
) -> FieldMappingResult:
    """
    Resolve `option` against the field last asked about.

    Order: cancel, force-register, skip, clock time for scheduledTime, then the
    field's option table. success=False without an action means the caller
    should treat the text as free input for the LLM.
    """
    option = option.strip()

    if option == DECLINE:
        return _failed("cancel")
    if option == REGISTER_ANYWAY:
        return _failed("register_anyway")

    field = TaskField.parse(current_field)

    if option == SKIP:
        if field is None:
            return _failed()
        answered = set(resolved) | {field.value}
        return FieldMappingResult(
            success=True,
            field=field.value,
            value=None,
            next_field=get_next_missing_field(current_task_info, False, answered),
        )

    if field is None:
        return _failed()

    if field == TaskField.SCHEDULED_TIME:
        parsed = parse_time_from_input(option)
        if parsed:
            return _resolved(field, format_clock(parsed["hour"], parsed["minute"]), current_task_info, resolved)

    value, success = map_option_to_field_value(option, field.value, base)
    if success:
        return _resolved(field, value, current_task_info, resolved)

    return _failed()


def parse_chat_input(
    text: str,
    current_field: Optional[str],
    current_task_info: TaskInfo,
    resolved: Iterable[str] = (),
    base: Optional[datetime] = None,
) -> dict:
    """
    Classify raw chat text.

    Returns {"type": "cancel" | "selection" | "time_input" | "free_text", ...}
    with field/value/next_field for the local matches.
    """
    text = text.strip()
    if text == DECLINE:
        return {"type": "cancel"}

    field = TaskField.parse(current_field)
    if text == SKIP:
        if field is None:
            return {"type": "free_text"}
        mapping = map_selection_to_field(text, current_field, current_task_info, resolved, base)
        return {"type": "selection", "field": mapping.field, "value": None, "next_field": mapping.next_field}

    if field in (TaskField.SCHEDULED_DATE, TaskField.SCHEDULED_TIME):
        mapping = map_selection_to_field(text, current_field, current_task_info, resolved, base)
        if mapping.success:
            is_clock = field == TaskField.SCHEDULED_TIME and text not in FIELD_LABELS[field]["options"]
            return {
                "type": "time_input" if is_clock else "selection",
                "field": mapping.field,
                "value": mapping.value,
                "next_field": mapping.next_field,
            }

    return {"type": "free_text"}


def generate_next_question(
    info: TaskInfo,
    is_initial: bool = False,
    resolved: Iterable[str] = (),
) -> dict:
    """Next question with its chips plus the universal skip / register-anyway chips."""
    next_field = get_next_missing_field(info, is_initial, resolved)
    if not next_field:
        return {"field": None, "question": "", "options": []}
    return generate_field_question(next_field)


def generate_field_question(field_name: str) -> dict:
    return {
        "field": field_name,
        "question": generate_question(field_name),
        "options": [*get_field_options(field_name), *UNIVERSAL_OPTIONS],
    }


def can_register_task(info: TaskInfo) -> bool:
    return is_task_complete(info)


def extract_title_from_input(text: Optional[str]) -> Optional[str]:
    """
    Title fallback when the LLM returns none: drop time expressions, keep
    particles. Falls back to the whole input when stripping leaves < 2 chars.
    """
    if not text or not text.strip():
        return None
    trimmed = text.strip()

    cleaned = trimmed
    for pattern in TITLE_TIME_PATTERNS:
        cleaned = pattern.sub("", cleaned, count=1)
    cleaned = cleaned.strip()

    if len(cleaned) >= 2:
        return cleaned
    if len(trimmed) >= 2:
        return trimmed
    return None
