import json
import logging
import re
from datetime import datetime
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from banquet_agent import agent_runner
from banquet_agent.core.config import settings
from banquet_agent.schemas.sessions import BookingRecord, Message

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


def strip_code_fence(text: str) -> str:
    """```json ... ``` 형태로 감싼 응답에서 펜스를 제거"""
    return _FENCE_RE.sub("", text or "").strip()


def parse_booking_json(text: str) -> Optional[BookingRecord]:
    """모델 응답을 BookingRecord 로 변환. 구조가 맞지 않으면 None."""
    cleaned = strip_code_fence(text)
    if not cleaned:
        return None
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        # 앞뒤에 설명이 붙은 경우 첫 번째 객체만 시도
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            data = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError:
            return None
    if not isinstance(data, dict):
        return None
    try:
        return BookingRecord.model_validate(data)
    except ValidationError as e:
        logger.info("Extracted booking failed validation: %s", e)
        return None


def format_conversation(history: Sequence[Message], window: int) -> str:
    recent = list(history)[-window:] if window > 0 else list(history)
    return "\n".join(f"{m.role}: {m.text}" for m in recent)


class BookingExtractor:
    """대화 기록에서 예약 레코드를 추출한다.

    필수 필드 5개가 모두 있을 때만 레코드를 돌려주고, 그 외(파싱 실패,
    누락, 모델 오류)는 모두 '아직 미완성'으로 보고 None 을 돌려준다.
    """

    def __init__(self, window: Optional[int] = None, timezone: Optional[str] = None):
        self.window = window if window is not None else settings.EXTRACTION_HISTORY_WINDOW
        self.timezone = timezone or settings.TIMEZONE

    async def extract(self, history: Sequence[Message]) -> Optional[BookingRecord]:
        conversation = format_conversation(history, self.window)
        if not conversation:
            return None

        today = datetime.now(ZoneInfo(self.timezone)).date().isoformat()
        try:
            raw = await agent_runner.ainvoke_extraction(conversation, today)
        except Exception as e:
            logger.error("Booking extraction call failed: %s", e)
            return None

        booking = parse_booking_json(raw)
        if booking is None:
            logger.info("No structured booking in extraction output")
            return None

        missing = booking.get_missing_fields()
        if missing:
            logger.info("Booking not complete yet, missing: %s", ", ".join(missing))
            return None

        logger.info("All required booking fields present")
        return booking
