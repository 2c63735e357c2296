import re
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

import dateparser
from dateparser.search import search_dates

from banquet_agent.core.config import settings

DEFAULT_TIME = "00:00:00"
DEFAULT_START = "12:00"
DEFAULT_END = "13:00"

_TIME_RE = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*(a\.?m\.?|p\.?m\.?)?", re.IGNORECASE)
_EXPLICIT_TIME_RE = re.compile(
    r"\d{1,2}(?::\d{2})?\s*(?:a\.?m\.?|p\.?m\.?)|\d{1,2}:\d{2}", re.IGNORECASE
)
_BARE_HOUR_RE = re.compile(r"\b\d{1,2}\b")
_RANGE_RE = re.compile(
    r"(\d{1,2}(?::\d{2})?\s*(?:am|pm)?)"
    r"\s*(?:-|–|to|until|till)\s*"
    r"(\d{1,2}(?::\d{2})?\s*(?:am|pm)?)",
    re.IGNORECASE,
)
_MERIDIEM_RE = re.compile(r"(am|pm)\s*$", re.IGNORECASE)
_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_YEAR_RE = re.compile(r"\b\d{4}\b")
_ORDINAL_RE = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th)\b", re.IGNORECASE)

_TIME_WORDS = {"noon": "12:00pm", "midday": "12:00pm", "midnight": "12:00am"}
_TIME_WORD_RE = re.compile(r"\b(noon|midday|midnight)\b", re.IGNORECASE)


def normalize_time(text: Optional[str]) -> str:
    """자유 형식 시간을 HH:MM:SS 로 변환한다.

    "6pm" -> "18:00:00", "12am" -> "00:00:00", "6:30" -> "06:30:00".
    오전/오후 표시가 없으면 24시간제로 본다. 해석할 수 없으면 00:00:00.
    """
    if not text:
        return DEFAULT_TIME

    match = _TIME_RE.search(text.strip().lower())
    if not match:
        return DEFAULT_TIME

    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    meridiem = (match.group(3) or "").replace(".", "")

    if meridiem == "pm" and hour < 12:
        hour += 12
    elif meridiem == "am" and hour == 12:
        hour = 0

    if hour > 23 or minute > 59:
        return DEFAULT_TIME
    return f"{hour:02d}:{minute:02d}:00"


def split_time_range(text: Optional[str]) -> Optional[Tuple[str, str]]:
    """'6pm-9pm', '6pm to 9pm' 같은 시간 범위를 (시작, 종료) 원문으로 나눈다."""
    if not text:
        return None

    match = _RANGE_RE.search(text)
    if not match:
        return None

    start = match.group(1).strip()
    end = match.group(2).strip()

    # "6-9pm": 시작에 오전/오후가 없으면 종료 쪽 표시를 물려받는다 (시작 < 종료일 때만)
    end_meridiem = _MERIDIEM_RE.search(end)
    if end_meridiem and not _MERIDIEM_RE.search(start):
        candidate = f"{start}{end_meridiem.group(1).lower()}"
        if normalize_time(candidate) < normalize_time(end):
            start = candidate

    return start, end


def extract_time(text: Optional[str]) -> Optional[str]:
    """메시지에서 첫 번째 시간 표현을 찾는다. 없으면 None."""
    if not text:
        return None

    match = _EXPLICIT_TIME_RE.search(text)
    if match:
        return match.group(0).strip()

    # "afternoon" 안의 noon 은 제외
    match = _TIME_WORD_RE.search(text)
    if match:
        return _TIME_WORDS[match.group(1).lower()]

    match = _BARE_HOUR_RE.search(text)
    if match and int(match.group(0)) <= 23:
        return match.group(0)
    return None


def _local_now(timezone: str) -> datetime:
    return datetime.now(ZoneInfo(timezone)).replace(tzinfo=None)


def _next_year(day: date) -> date:
    try:
        return day.replace(year=day.year + 1)
    except ValueError:
        # 2월 29일 -> 다음 해 3월 1일
        return day.replace(year=day.year + 1, month=3, day=1)


def parse_date(
    text: Optional[str],
    now: Optional[datetime] = None,
    timezone: Optional[str] = None,
) -> Optional[str]:
    """자유 형식 날짜를 YYYY-MM-DD 로 변환한다. 해석할 수 없으면 None.

    연도를 말하지 않았는데 결과가 오늘보다 과거이면 다음 해로 넘긴다.
    """
    if not text or not text.strip():
        return None

    raw = text.strip()
    iso = _ISO_DATE_RE.search(raw)
    if iso:
        try:
            return date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3))).isoformat()
        except ValueError:
            pass

    base = now.replace(tzinfo=None) if now else _local_now(timezone or settings.TIMEZONE)
    parser_settings = {"PREFER_DATES_FROM": "future", "RELATIVE_BASE": base}
    cleaned = _ORDINAL_RE.sub(r"\1", raw)

    parsed = dateparser.parse(cleaned, languages=["en"], settings=parser_settings)
    if parsed is None:
        found = search_dates(cleaned, languages=["en"], settings=parser_settings)
        if found:
            parsed = found[0][1]
    if parsed is None:
        return None

    day = parsed.date()
    if not _YEAR_RE.search(raw) and day < base.date():
        day = _next_year(day)
    return day.isoformat()


def event_span(
    booking_date: Optional[str],
    start: Optional[str],
    end: Optional[str],
    now: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    """예약 날짜와 시작/종료 시간으로 일정 구간을 만든다.

    종료가 시작보다 늦지 않으면 종료 = 시작 + 1시간.
    날짜를 해석할 수 없으면 ValueError.
    """
    day_text = parse_date(booking_date, now=now)
    if not day_text:
        raise ValueError(f"Unparseable booking date: {booking_date!r}")
    day = date.fromisoformat(day_text)

    start_at = datetime.combine(day, time.fromisoformat(normalize_time(start or DEFAULT_START)))
    end_at = datetime.combine(day, time.fromisoformat(normalize_time(end or DEFAULT_END)))
    if end_at <= start_at:
        end_at = start_at + timedelta(hours=1)
    return start_at, end_at
