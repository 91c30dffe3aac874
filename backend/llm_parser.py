"""
LLM extraction pipeline.

First message: full extraction. Later messages: merge new text into the
record collected so far. Control chips and exact option matches are resolved
locally without a model call. Any model, network or JSON failure yields the
fallback result instead of an exception, so a conversation turn never fails
because of the LLM.
"""
import json
import logging
from datetime import datetime
from typing import Any, Optional

import anthropic
import openai

from config import Settings, load_settings
from errors import AppError, ErrorCode, create_error
from field_mapping import parse_chat_input
from models import LlmConfig, ParseResult, TaskInfo
from prompts import SYSTEM_PROMPT, build_continuation_prompt, build_first_input_prompt
from task_fields import (
    CATEGORIES,
    CONFIRM_OPTIONS,
    CONTROL_COMMANDS,
    DECLINE,
    REQUIRED_FIELDS,
    apply_patch,
    generate_question,
    get_field_options,
    get_value,
    map_option_to_field_value,
)
from time_utils import (
    DATE_RE,
    create_deadline_datetime,
    is_valid_scheduled_time,
    normalize_date_time,
    parse_duration_to_minutes,
)

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENROUTER_HEADERS = {
    "HTTP-Referer": "http://localhost:3000",
    "X-Title": "poitto",
}
ANTHROPIC_MAX_TOKENS = 512
FALLBACK_CATEGORY = "personal"


def resolve_config(config: Optional[LlmConfig], settings: Settings) -> LlmConfig:
    """Fill provider/model/key from server settings where the request left them out."""
    provider = config.provider if config else settings.llm_provider
    model = (config.model if config and config.model else None) or settings.model_for(provider)
    api_key = (config.api_key if config and config.api_key else None) or settings.api_key_for(provider)
    if not api_key:
        raise create_error(ErrorCode.LLM_API_ERROR, f"No API key configured for provider '{provider}'")
    return LlmConfig(provider=provider, model=model, api_key=api_key)


async def request_completion(prompt: str, config: LlmConfig, timeout: float) -> str:
    """One chat completion in JSON mode at temperature 0. Returns the raw content."""
    if config.provider == "anthropic":
        async with anthropic.AsyncAnthropic(api_key=config.api_key, timeout=timeout) as client:
            response = await client.messages.create(
                model=config.model,
                max_tokens=ANTHROPIC_MAX_TOKENS,
                temperature=0,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        content = response.content[0].text if response.content else None
    else:
        openrouter = config.provider == "openrouter"
        async with openai.AsyncOpenAI(
            api_key=config.api_key,
            base_url=OPENROUTER_BASE_URL if openrouter else None,
            timeout=timeout,
        ) as client:
            response = await client.chat.completions.create(
                model=config.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0,
                response_format={"type": "json_object"},
                extra_headers=OPENROUTER_HEADERS if openrouter else None,
            )
        content = response.choices[0].message.content if response.choices else None

    if not content:
        raise ValueError("No response content from model")
    return content


def parse_json_response(text: str) -> dict:
    """Parse the model output, tolerating a ```json fenced block."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        lines = lines[1:]  # ```json
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)

    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


# Field coercion. Each returns None when the model's value is unusable.

def parse_title(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_category(value: Any) -> Optional[str]:
    return value if value in CATEGORIES else None


def parse_scheduled_date(value: Any, now: Optional[datetime] = None) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    value = value.strip()
    if DATE_RE.match(value):
        return value
    normalized = normalize_date_time(value, now)
    if normalized:
        return normalized.split("T")[0]
    return None


def parse_scheduled_time(value: Any) -> Optional[str]:
    if not isinstance(value, str) or value == "null":
        return None
    value = value.strip()
    return value if is_valid_scheduled_time(value) else None


def parse_deadline(value: Any, now: Optional[datetime] = None) -> Optional[str]:
    if not isinstance(value, str):
        return None
    normalized = normalize_date_time(value, now)
    if not normalized:
        return None
    # Deadlines are end of day whatever time the model chose
    return create_deadline_datetime(normalized[:10])


def parse_duration(value: Any) -> Optional[int]:
    # JSON numbers are already minutes; strings may read "1時間半"
    return parse_duration_to_minutes(value)


def build_task_info_from_llm_response(
    parsed: dict,
    raw_input: str,
    current: Optional[TaskInfo] = None,
    now: Optional[datetime] = None,
) -> TaskInfo:
    """
    Validate the model's JSON into a TaskInfo.

    With `current` the result is a merge: a usable new value wins, otherwise
    the current value is kept. The title falls back to the current title and
    then to the raw input.
    """
    current = current or TaskInfo()
    extracted = {
        "title": parse_title(parsed.get("title")),
        "category": parse_category(parsed.get("category")),
        "scheduled_date": parse_scheduled_date(parsed.get("scheduledDate"), now),
        "scheduled_time": parse_scheduled_time(parsed.get("scheduledTime")),
        "deadline": parse_deadline(parsed.get("deadline"), now),
        "duration_minutes": parse_duration(parsed.get("durationMinutes")),
    }

    merged = {}
    for key, value in extracted.items():
        merged[key] = value if value is not None else getattr(current, key)
    if not merged["title"]:
        merged["title"] = raw_input.strip() or raw_input

    return TaskInfo(**merged)


def build_parse_result(info: TaskInfo, raw_input: str) -> ParseResult:
    missing = [field.value for field in REQUIRED_FIELDS if not get_value(info, field)]
    if missing:
        next_question = generate_question(missing[0])
        options = [*get_field_options(missing[0]), DECLINE]
    else:
        next_question = None
        options = list(CONFIRM_OPTIONS)

    return ParseResult(
        task_info=info,
        missing_fields=missing,
        next_question=next_question,
        clarification_options=options,
        is_complete=not missing,
        raw_input=raw_input,
        conversation_context=info.title or raw_input,
    )


def create_fallback_result(raw_input: str) -> ParseResult:
    """Registrable default used when extraction fails: raw text as title, category personal."""
    return ParseResult(
        task_info=TaskInfo(title=raw_input, category=FALLBACK_CATEGORY),
        missing_fields=[],
        next_question=None,
        clarification_options=list(CONFIRM_OPTIONS),
        is_complete=True,
        raw_input=raw_input,
        conversation_context=raw_input,
    )


async def parse_first_input(
    text: str,
    config: LlmConfig,
    settings: Settings,
    now: Optional[datetime] = None,
) -> ParseResult:
    prompt = build_first_input_prompt(text, now)
    content = await request_completion(prompt, config, settings.llm_timeout_seconds)
    logger.debug("LLM raw response: %s", content)

    parsed = parse_json_response(content)
    info = build_task_info_from_llm_response(parsed, text, now=now)
    return build_parse_result(info, text)


def resolve_locally(
    text: str,
    current: TaskInfo,
    current_field: Optional[str],
    now: Optional[datetime] = None,
) -> Optional[ParseResult]:
    """Control chips and exact option matches skip the model. None means ask the LLM."""
    stripped = text.strip()
    if stripped in CONTROL_COMMANDS:
        logger.debug("Control command handled locally: %s", stripped)
        return build_parse_result(current, text)

    if current_field and stripped in get_field_options(current_field):
        value, success = map_option_to_field_value(stripped, current_field, now)
        info = current
        if success:
            info = apply_patch(current, current_field, value)
        logger.debug("Option '%s' for %s handled locally", stripped, current_field)
        return build_parse_result(info, text)

    # Typed clock times such as 14時 for the scheduling slots
    chat = parse_chat_input(stripped, current_field, current, base=now)
    if chat["type"] in ("selection", "time_input"):
        logger.debug("%s input for %s handled locally", chat["type"], chat["field"])
        return build_parse_result(apply_patch(current, chat["field"], chat["value"]), text)

    return None


async def parse_continuation(
    text: str,
    current: TaskInfo,
    current_field: Optional[str],
    config: LlmConfig,
    settings: Settings,
    now: Optional[datetime] = None,
) -> ParseResult:
    local = resolve_locally(text, current, current_field, now)
    if local is not None:
        return local

    current_dict = current.model_dump(by_alias=True)
    prompt = build_continuation_prompt(text, current_dict, current_field, now)
    content = await request_completion(prompt, config, settings.llm_timeout_seconds)
    logger.debug("LLM continuation raw response: %s", content)

    parsed = parse_json_response(content)
    info = build_task_info_from_llm_response(parsed, text, current=current, now=now)
    return build_parse_result(info, text)


async def extract_task(
    text: str,
    config: Optional[LlmConfig] = None,
    previous_context: str = "",
    current_task_info: Optional[TaskInfo] = None,
    current_field: Optional[str] = None,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> tuple[ParseResult, Optional[AppError]]:
    """
    Run one extraction turn.

    Returns (result, warning). warning is an LLM_API_ERROR when the fallback
    result was used; it is meant to be shown softly, not raised.
    """
    settings = settings or load_settings()
    current = current_task_info or TaskInfo()
    is_first_input = not previous_context

    try:
        if not is_first_input:
            local = resolve_locally(text, current, current_field, now)
            if local is not None:
                return local, None

        resolved = resolve_config(config, settings)
        if is_first_input:
            result = await parse_first_input(text, resolved, settings, now)
        else:
            result = await parse_continuation(text, current, current_field, resolved, settings, now)
        return result, None
    except Exception as exc:
        # Fail open: API errors, timeouts and malformed JSON all use the fallback
        logger.warning("Task extraction failed, using fallback: %s", exc, exc_info=True)
        warning = exc if isinstance(exc, AppError) else create_error(ErrorCode.LLM_API_ERROR, str(exc))
        return create_fallback_result(text), warning


async def parse_task_with_llm(
    text: str,
    config: Optional[LlmConfig] = None,
    previous_context: str = "",
    current_task_info: Optional[TaskInfo] = None,
    current_field: Optional[str] = None,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> ParseResult:
    result, _ = await extract_task(
        text, config, previous_context, current_task_info, current_field, settings, now
    )
    return result
