"""단계별 연회 예약 흐름.

각 단계는 현재 메시지에서 필드 하나(또는 시작/종료 시간)를 추출해 예약 레코드에
쓰고, 다음 단계의 고정 질문을 돌려준다. 마지막 단계에서 예약을 마감하면
완성된 레코드를 돌려주고, 저장과 세션 초기화는 호출자(chat_service)가 한다.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from banquet_agent.core.config import settings
from banquet_agent.core.timeparse import extract_time, parse_date, split_time_range
from banquet_agent.schemas.sessions import BookingRecord, BookingStep, Session

BOOKING_KEYWORDS = ("book", "banquet", "reserve", "party", "event")
# 메시지 전체가 "no", "no, that's it", "nothing else, thanks" 같은 마무리 표현일 때만
_NEGATION_PHRASE = r"(?:no|nope|nah|none|nothing(?: else)?|that'?s (?:it|all)|thanks?|thank you|all good|i'?m good)"
_NEGATION_RE = re.compile(rf"{_NEGATION_PHRASE}(?: {_NEGATION_PHRASE})*")
_NON_WORD_RE = re.compile(r"[^\w\s']+")
EMAIL_RE = re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", re.IGNORECASE)
PHONE_RE = re.compile(r"\+?\d[\d\-\s().]{6,}\d")
PARTY_SIZE_RE = re.compile(r"\d{1,4}")

EVENT_TYPES = (
    "Anniversary Party",
    "Bar/Bat Mitzvah",
    "Birthday Party",
    "Business Meeting",
    "Charity Event",
    "Corporate Event",
    "Engagement Party",
    "Wedding Reception",
    "Graduation Party",
    "Holiday Party",
)

DATE_PROMPT = "Wonderful! What date would you like to book your banquet for?"
TIME_PROMPT = (
    "Got it! What time would you like your event to start (and end)? "
    "For example '6pm' or '6pm-9pm'."
)
PARTY_SIZE_PROMPT = "Perfect. How many guests are you expecting?"
EVENT_TYPE_PROMPT = "Noted. What type of event is this? Options include:\n" + "\n".join(
    f"- {name}" for name in EVENT_TYPES
)
FOOD_PROMPT = "Sounds great! What kind of food or catering would you like to have?"
EMAIL_PROMPT = "Excellent! Could you please provide a contact email so we can send confirmation?"
PHONE_PROMPT = "Thanks! And a phone number for quick contact?"
DECOR_PROMPT = "Got it. Would you like any specific decor or theme for the event?"
EXTRAS_PROMPT = "Any other special requests or questions you'd like noted?"


def has_booking_intent(message: str) -> bool:
    lowered = message.lower()
    return any(keyword in lowered for keyword in BOOKING_KEYWORDS)


def is_negation(message: str) -> bool:
    normalized = _NON_WORD_RE.sub(" ", message.lower().replace("’", "'"))
    normalized = " ".join(normalized.split())
    return bool(normalized) and bool(_NEGATION_RE.fullmatch(normalized))


def match_event_type(message: str) -> Optional[str]:
    """제안 목록의 행사 종류가 언급되면 표준 이름을 돌려준다."""
    lowered = message.lower()
    for name in EVENT_TYPES:
        if name.lower() in lowered:
            return name
    # "birthday", "wedding" 처럼 첫 단어만 말한 경우
    for name in EVENT_TYPES:
        head = name.split()[0].split("/")[0].lower()
        if re.search(rf"\b{re.escape(head)}\b", lowered):
            return name
    return None


# ----- 단계별 추출 -----


def capture_date(booking: BookingRecord, message: str, now: Optional[datetime]) -> None:
    booking.date = parse_date(message, now=now) or message


def capture_time(booking: BookingRecord, message: str, now: Optional[datetime]) -> None:
    time_range = split_time_range(message)
    if time_range:
        booking.start_time, booking.end_time = time_range
        return
    booking.start_time = extract_time(message) or message


def capture_party_size(booking: BookingRecord, message: str, now: Optional[datetime]) -> None:
    match = PARTY_SIZE_RE.search(message)
    booking.party_size = int(match.group(0)) if match else message


def capture_event_type(booking: BookingRecord, message: str, now: Optional[datetime]) -> None:
    booking.event_type = match_event_type(message) or message


def capture_food(booking: BookingRecord, message: str, now: Optional[datetime]) -> None:
    booking.food = message


def capture_email(booking: BookingRecord, message: str, now: Optional[datetime]) -> None:
    match = EMAIL_RE.search(message)
    booking.email = match.group(0) if match else message


def capture_phone(booking: BookingRecord, message: str, now: Optional[datetime]) -> None:
    match = PHONE_RE.search(message)
    booking.phone = match.group(0).strip() if match else message


def capture_decor(booking: BookingRecord, message: str, now: Optional[datetime]) -> None:
    booking.decor = message


@dataclass(frozen=True)
class Transition:
    field: str
    capture: Callable[[BookingRecord, str, Optional[datetime]], None]
    next_step: BookingStep
    prompt: str


TRANSITIONS: Dict[BookingStep, Transition] = {
    BookingStep.AWAITING_DATE: Transition(
        "date", capture_date, BookingStep.AWAITING_TIME, TIME_PROMPT
    ),
    BookingStep.AWAITING_TIME: Transition(
        "start_time", capture_time, BookingStep.AWAITING_PARTY_SIZE, PARTY_SIZE_PROMPT
    ),
    BookingStep.AWAITING_PARTY_SIZE: Transition(
        "party_size", capture_party_size, BookingStep.AWAITING_EVENT_TYPE, EVENT_TYPE_PROMPT
    ),
    BookingStep.AWAITING_EVENT_TYPE: Transition(
        "event_type", capture_event_type, BookingStep.AWAITING_FOOD, FOOD_PROMPT
    ),
    BookingStep.AWAITING_FOOD: Transition(
        "food", capture_food, BookingStep.AWAITING_EMAIL, EMAIL_PROMPT
    ),
    BookingStep.AWAITING_EMAIL: Transition(
        "email", capture_email, BookingStep.AWAITING_PHONE, PHONE_PROMPT
    ),
    BookingStep.AWAITING_PHONE: Transition(
        "phone", capture_phone, BookingStep.AWAITING_DECOR, DECOR_PROMPT
    ),
    BookingStep.AWAITING_DECOR: Transition(
        "decor", capture_decor, BookingStep.AWAITING_EXTRAS_OR_CONFIRM, EXTRAS_PROMPT
    ),
}


@dataclass
class StepOutcome:
    """한 턴의 처리 결과.

    reply 가 None 이면 고정 질문이 없으므로 LLM 자유 대화로 답한다.
    completed 가 있으면 예약이 마감된 것이다.
    """

    reply: Optional[str] = None
    completed: Optional[BookingRecord] = None

    @property
    def free_form(self) -> bool:
        return self.reply is None


def format_summary(booking: BookingRecord) -> str:
    time_text = booking.start_time or "TBD"
    if booking.end_time:
        time_text = f"{time_text} - {booking.end_time}"
    lines = [
        f"Date: {booking.date or 'TBD'}",
        f"Time: {time_text}",
        f"Guests: {booking.party_size or 'TBD'}",
        f"Event Type: {booking.event_type or 'TBD'}",
        f"Food: {booking.food or 'TBD'}",
        f"Email: {booking.email or 'TBD'}",
        f"Phone: {booking.phone or 'TBD'}",
        f"Decor: {booking.decor or 'None'}",
    ]
    if booking.extras:
        lines.append(f"Notes: {booking.extras}")
    return "\n".join(lines)


class BookingStepMachine:
    def __init__(self, venue_phone: Optional[str] = None, venue_email: Optional[str] = None):
        self.venue_phone = venue_phone or settings.VENUE_PHONE
        self.venue_email = venue_email or settings.VENUE_EMAIL

    def advance(
        self, session: Session, message: str, now: Optional[datetime] = None
    ) -> StepOutcome:
        """세션 상태를 한 단계 진행한다 (세션을 직접 수정)."""
        step = session.step

        if step in (BookingStep.GREETING, BookingStep.AWAITING_INTENT):
            if has_booking_intent(message):
                return self._ask(session, BookingStep.AWAITING_DATE, DATE_PROMPT)
            session.step = BookingStep.AWAITING_INTENT
            return StepOutcome()

        if step == BookingStep.AWAITING_EXTRAS_OR_CONFIRM:
            return self._close(session, message)

        transition = TRANSITIONS[step]
        transition.capture(session.booking, message, now)
        return self._ask(session, transition.next_step, transition.prompt)

    def _ask(self, session: Session, step: BookingStep, prompt: str) -> StepOutcome:
        session.step = step
        session.last_prompt = prompt
        return StepOutcome(reply=prompt)

    def _follow_up(self) -> str:
        return (
            f"We'll follow up to confirm. For immediate help call {self.venue_phone} "
            f"or email {self.venue_email}."
        )

    def _close(self, session: Session, message: str) -> StepOutcome:
        booking = session.booking
        if is_negation(message):
            reply = (
                "Thanks! Here's a summary of your booking:\n\n"
                f"{format_summary(booking)}\n\n{self._follow_up()}"
            )
        else:
            booking.extras = message
            reply = (
                f'Noted. I\'ve added: "{message}". We\'ll include that in your booking.\n\n'
                f"{format_summary(booking)}\n\n{self._follow_up()}"
            )
        session.last_prompt = reply
        return StepOutcome(reply=reply, completed=booking.model_copy(deep=True))
