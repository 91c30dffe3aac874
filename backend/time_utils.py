"""
Time-expression helpers.

All absolute timestamps in this app are stamped with the fixed JST offset
(+09:00). Relative phrases ("明日", "今週中", "2時間半") are converted here so
that the LLM pipeline, the option tables and the conversation loop share one
implementation.
"""
import re
import unicodedata
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union

JST = timezone(timedelta(hours=9), "JST")
JST_OFFSET = "+09:00"

# Slot name -> clock time. "unspecified" is the fallback used by the forms.
TIME_SLOTS = {
    "morning": "07:00",
    "noon": "12:00",
    "afternoon": "15:00",
    "evening": "18:00",
    "unspecified": "09:00",
}
SLOT_NAMES = ("morning", "noon", "afternoon", "evening")

DEFAULT_HOUR = 9
END_OF_DAY = time(23, 59)

NO_DATE_WORDS = ("期限なし", "なし", "未定")

ISO_DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2}(\.\d+)?)?")
ISO_OFFSET_RE = re.compile(r"(Z|[+-]\d{2}:?\d{2})$")
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
CLOCK_RE = re.compile(r"^\d{2}:\d{2}$")

TIME_PATTERNS = [
    re.compile(r"(\d{1,2})\s*時(?:\s*(\d{1,2})\s*分?)?"),  # 14時, 14時30分
    re.compile(r"(\d{1,2}):(\d{2})"),  # 14:00
    re.compile(r"午前(\d{1,2})\s*時?(?:\s*(\d{1,2})\s*分?)?"),  # 午前9時
    re.compile(r"午後(\d{1,2})\s*時?(?:\s*(\d{1,2})\s*分?)?"),  # 午後2時
]

HOURS_RE = re.compile(r"(\d+(?:\.\d+)?)\s*時間(\s*半)?")
MINUTES_RE = re.compile(r"(\d+)\s*分")
NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?$")


def _normalize(text: str) -> str:
    # Full-width digits and colons to ASCII
    return unicodedata.normalize("NFKC", text).strip()


def get_jst_now() -> datetime:
    """Current wall-clock time in JST."""
    return datetime.now(JST)


def _as_jst(base: Optional[datetime]) -> datetime:
    if base is None:
        return get_jst_now()
    if base.tzinfo is None:
        return base.replace(tzinfo=JST)
    return base.astimezone(JST)


def to_jst_iso_string(value: datetime) -> str:
    """Format as YYYY-MM-DDTHH:MM:SS+09:00.

    Naive datetimes are taken to already be JST wall-clock time.
    """
    if value.tzinfo is not None:
        value = value.astimezone(JST)
    return (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}{JST_OFFSET}"
    )


def format_date(value: Union[date, datetime]) -> str:
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def _last_day_of_month(value: datetime) -> datetime:
    first_of_next = (value.replace(day=28) + timedelta(days=4)).replace(day=1)
    return first_of_next - timedelta(days=1)


def parse_relative_date(phrase: Optional[str], base: Optional[datetime] = None) -> Optional[dict]:
    """
    Resolve a relative date phrase against `base` (default: now in JST).

    Returns {"date": datetime, "is_end_of_day": bool} or None when the phrase
    is outside the vocabulary or explicitly means "no date".
    The first matching keyword wins; a phrase holding several keywords is
    resolved by check order, not by longest match.
    """
    if not phrase:
        return None
    text = _normalize(phrase)
    if any(word in text for word in NO_DATE_WORDS):
        return None

    now = _as_jst(base)

    if "明後日" in text:
        return {"date": now + timedelta(days=2), "is_end_of_day": False}
    if "明日" in text:
        return {"date": now + timedelta(days=1), "is_end_of_day": False}
    if "今日" in text:
        return {"date": now, "is_end_of_day": False}
    if "昨日" in text:
        return {"date": now - timedelta(days=1), "is_end_of_day": False}
    if "今週" in text:
        # Weeks run Monday-Sunday; "this week" ends on Sunday
        days_until_sunday = 6 - now.weekday()
        return {"date": now + timedelta(days=days_until_sunday), "is_end_of_day": True}
    if "来週" in text:
        days_until_monday = 7 - now.weekday()
        return {"date": now + timedelta(days=days_until_monday), "is_end_of_day": False}
    if "今月" in text:
        return {"date": _last_day_of_month(now), "is_end_of_day": True}
    if "来月" in text:
        first_of_next = _last_day_of_month(now) + timedelta(days=1)
        return {"date": first_of_next, "is_end_of_day": False}

    return None


def _explicit_time(text: str) -> Optional[tuple[int, int]]:
    match = re.search(r"(\d{1,2})\s*(?:時|:)\s*(?:(\d{1,2})\s*分?)?", text)
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2)) if match.group(2) else 0
    if "午後" in text and hour < 12:
        hour += 12
    if 0 <= hour <= 23 and 0 <= minute <= 59:
        return hour, minute
    return None


def normalize_date_time(value: Optional[str], base: Optional[datetime] = None) -> Optional[str]:
    """
    Normalize a date/time expression to a JST ISO8601 string.

    - ISO datetimes pass through; a missing offset gets +09:00.
    - YYYY-MM-DD is stamped 09:00.
    - Relative phrases go through parse_relative_date, then the time of day is
      an explicit "15時" / "午後3時" in the phrase, else 23:59 for end-of-day
      phrases, else 09:00.
    """
    if value is None:
        return None
    text = _normalize(str(value))
    if not text or text.lower() == "null":
        return None

    if ISO_DATETIME_RE.match(text):
        if ISO_OFFSET_RE.search(text):
            return text
        return text + JST_OFFSET

    if DATE_RE.match(text):
        return f"{text}T{DEFAULT_HOUR:02d}:00:00{JST_OFFSET}"

    relative = parse_relative_date(text, base)
    if relative is None:
        return None

    target = relative["date"]
    explicit = _explicit_time(text)
    if explicit is not None:
        hour, minute = explicit
    elif relative["is_end_of_day"]:
        hour, minute = END_OF_DAY.hour, END_OF_DAY.minute
    else:
        hour, minute = DEFAULT_HOUR, 0

    target = target.replace(hour=hour, minute=minute, second=0, microsecond=0)
    return to_jst_iso_string(target)


def parse_duration_to_minutes(value) -> Optional[int]:
    """
    Parse a duration into whole minutes.

    Accepts "1時間", "1.5時間", "30分", "1時間30分", "2時間半" and bare numbers
    (already minutes). Zero, negative and unparseable input return None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        minutes = round(value)
        return minutes if minutes > 0 else None

    text = _normalize(str(value))
    if not text:
        return None

    if NUMBER_RE.match(text):
        minutes = round(float(text))
        return minutes if minutes > 0 else None

    total = 0.0
    matched = False

    hours_match = HOURS_RE.search(text)
    if hours_match:
        matched = True
        total += float(hours_match.group(1)) * 60
        if hours_match.group(2):
            total += 30

    minutes_match = MINUTES_RE.search(text)
    if minutes_match:
        matched = True
        total += int(minutes_match.group(1))

    if not matched:
        return None
    minutes = round(total)
    return minutes if minutes > 0 else None


def parse_time_from_input(text: Optional[str]) -> Optional[dict]:
    """Extract {"hour", "minute"} from chat input like "14時", "14:30" or "午後2時"."""
    if not text:
        return None
    text = _normalize(text)

    for pattern in TIME_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        hour = int(match.group(1))
        minute = int(match.group(2)) if match.group(2) else 0

        # 午後12時 stays 12:00
        if "午後" in text and hour != 12:
            hour += 12

        if 0 <= hour <= 23 and 0 <= minute <= 59:
            return {"hour": hour, "minute": minute}

    return None


def format_clock(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"


def create_jst_scheduled_at(time_value: dict, days_from_now: int = 1, base: Optional[datetime] = None) -> str:
    """Timestamp `days_from_now` days ahead at the given hour/minute."""
    target = _as_jst(base) + timedelta(days=days_from_now)
    target = target.replace(hour=time_value["hour"], minute=time_value["minute"], second=0, microsecond=0)
    return to_jst_iso_string(target)


def create_deadline_datetime(date_str: str) -> str:
    """Deadlines are always end of day: YYYY-MM-DDT23:59:00+09:00."""
    return f"{date_str}T23:59:00{JST_OFFSET}"


def get_time_from_slot(slot: Optional[str]) -> Optional[str]:
    if not slot:
        return None
    return TIME_SLOTS.get(slot)


def is_valid_scheduled_time(value) -> bool:
    return isinstance(value, str) and (bool(CLOCK_RE.match(value)) or value in SLOT_NAMES)


def combine_date_and_time(date_str: Optional[str], time_or_slot: Optional[str]) -> Optional[str]:
    """
    Build the scheduled timestamp from the split date/time slots.

    A missing time is not an error: it means the task has no slot yet and
    belongs in the inbox, so None is returned.
    """
    if not date_str:
        return None
    if not time_or_slot:
        return None
    clock = time_or_slot if CLOCK_RE.match(time_or_slot) else get_time_from_slot(time_or_slot)
    if clock is None:
        return None
    return f"{date_str}T{clock}:00{JST_OFFSET}"


def split_date_time(value: Optional[str]) -> dict:
    """Split an ISO string into {"date": "YYYY-MM-DD", "time": "HH:MM" | None}."""
    if not value:
        return {"date": "", "time": None}
    date_part, _, rest = value.partition("T")
    time_part = rest[:5] if len(rest) >= 5 and CLOCK_RE.match(rest[:5]) else None
    return {"date": date_part[:10], "time": time_part}


def split_scheduled_at(value: Union[str, datetime, None]) -> dict:
    """
    Decompose a stored scheduled_at into JST date and time strings.

    Unlike split_date_time the value is converted to JST first, so a UTC
    timestamp from the database lands on the right local day.
    """
    if not value:
        return {"date": "", "time": ""}
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return {"date": "", "time": ""}
    else:
        parsed = value
    local = _as_jst(parsed)
    return {"date": format_date(local), "time": format_clock(local.hour, local.minute)}
