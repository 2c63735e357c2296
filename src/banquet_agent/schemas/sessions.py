import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

REQUIRED_FIELDS = ("date", "start_time", "party_size", "email", "event_type")

_NULL_STRINGS = {"", "null", "none", "n/a"}


class BookingStep(str, Enum):
    """단계별 예약 흐름의 상태"""

    GREETING = "greeting"
    AWAITING_INTENT = "awaiting_intent"  # 예약 의도가 없을 때의 자유 대화
    AWAITING_DATE = "awaiting_date"
    AWAITING_TIME = "awaiting_time"
    AWAITING_PARTY_SIZE = "awaiting_party_size"
    AWAITING_EVENT_TYPE = "awaiting_event_type"
    AWAITING_FOOD = "awaiting_food"
    AWAITING_EMAIL = "awaiting_email"
    AWAITING_PHONE = "awaiting_phone"
    AWAITING_DECOR = "awaiting_decor"
    AWAITING_EXTRAS_OR_CONFIRM = "awaiting_extras_or_confirm"


class BookingRecord(BaseModel):
    """연회 예약에 필요한 필드"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    party_size: Optional[Union[int, str]] = None
    event_type: Optional[str] = None
    food: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    decor: Optional[str] = None
    extras: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("extras", "notes")
    )

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            if value.lower() in _NULL_STRINGS:
                return None
        return value

    @field_validator("party_size", mode="before")
    @classmethod
    def _party_size_to_int(cls, value: Any) -> Any:
        if isinstance(value, str) and re.fullmatch(r"\d{1,4}", value.strip()):
            return int(value.strip())
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return value

    @field_validator("date", "start_time", "end_time", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        # LLM 이 숫자로 돌려주는 경우 대비
        if isinstance(value, (int, float)):
            return str(value)
        return value

    def is_complete(self) -> bool:
        """필수 필드(날짜, 시작 시간, 인원, 이메일, 행사 종류)가 모두 채워졌는지 확인"""
        return not self.get_missing_fields()

    def get_missing_fields(self) -> List[str]:
        """누락된 필수 필드 목록 반환"""
        return [name for name in REQUIRED_FIELDS if getattr(self, name) is None]

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환 (None 값 제외, camelCase 키)"""
        return self.model_dump(by_alias=True, exclude_none=True)


class Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role: Literal["user", "assistant", "system"] = Field(alias="sender")
    text: str


def _now_iso() -> str:
    return datetime.utcnow().isoformat()


class Session(BaseModel):
    """서버가 보관하는 대화 상태. 클라이언트는 session_id 만 가진다."""

    session_id: str
    step: BookingStep = BookingStep.GREETING
    booking: BookingRecord = Field(default_factory=BookingRecord)
    history: List[Message] = Field(default_factory=list)
    last_prompt: str = ""
    last_saved_booking: Optional[BookingRecord] = None
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    def add_message(self, role: str, text: str) -> None:
        self.history.append(Message(role=role, text=text))

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
