"""스트리밍 응답 이벤트.

서버 -> 클라이언트 채널은 `data: <payload>\\n\\n` 프레임의 나열이다.

- 첫 프레임:      data: {"sessionId": "<id>"}
- 텍스트 조각:    data: <text>   (역슬래시는 \\\\, 줄바꿈은 \\n, \\r 로 이스케이프)
- 예약 저장 완료: data: [BOOKING_SAVED]
- 스트림 종료:    data: [DONE]   (항상 마지막)

이벤트는 전송 경계에서 한 번만 인코딩/디코딩하고, 그 안쪽에서는
타입이 있는 객체로만 다룬다.
"""

import json
import re
from typing import Iterable, Iterator, Literal, Optional, Union

from pydantic import BaseModel

DATA_PREFIX = "data: "
BOOKING_SAVED_MARKER = "[BOOKING_SAVED]"
DONE_MARKER = "[DONE]"


class SessionAssigned(BaseModel):
    kind: Literal["session"] = "session"
    session_id: str


class TextChunk(BaseModel):
    kind: Literal["text"] = "text"
    text: str


class BookingSaved(BaseModel):
    kind: Literal["booking_saved"] = "booking_saved"


class Done(BaseModel):
    kind: Literal["done"] = "done"


StreamEvent = Union[SessionAssigned, TextChunk, BookingSaved, Done]


_ESCAPE_SEQUENCE_RE = re.compile(r"\\([\\nr])")
_UNESCAPES = {"\\": "\\", "n": "\n", "r": "\r"}


def escape_newlines(text: str) -> str:
    # 역슬래시를 먼저 이스케이프해야 원문의 "\n" 두 글자와 줄바꿈이 구분된다
    return text.replace("\\", "\\\\").replace("\n", "\\n").replace("\r", "\\r")


def unescape_newlines(text: str) -> str:
    return _ESCAPE_SEQUENCE_RE.sub(lambda m: _UNESCAPES[m.group(1)], text)


def encode_event(event: StreamEvent) -> str:
    """이벤트 하나를 SSE 프레임 문자열로 변환"""
    if isinstance(event, SessionAssigned):
        payload = json.dumps({"sessionId": event.session_id})
    elif isinstance(event, TextChunk):
        payload = escape_newlines(event.text)
    elif isinstance(event, BookingSaved):
        payload = BOOKING_SAVED_MARKER
    elif isinstance(event, Done):
        payload = DONE_MARKER
    else:
        raise TypeError(f"Unknown stream event: {event!r}")
    return f"{DATA_PREFIX}{payload}\n\n"


def decode_frame(line: str) -> Optional[StreamEvent]:
    """SSE 한 줄을 이벤트로 변환. 빈 줄이나 data: 가 아닌 줄은 None."""
    if not line or not line.strip():
        return None
    if not line.startswith(DATA_PREFIX):
        return None

    content = line[len(DATA_PREFIX) :]
    if content == DONE_MARKER:
        return Done()
    if content == BOOKING_SAVED_MARKER:
        return BookingSaved()
    if content.startswith('{"sessionId"'):
        try:
            session_id = json.loads(content).get("sessionId")
        except (json.JSONDecodeError, AttributeError):
            session_id = None
        if session_id:
            return SessionAssigned(session_id=session_id)
    return TextChunk(text=unescape_newlines(content))


def decode_lines(lines: Iterable[str]) -> Iterator[StreamEvent]:
    for line in lines:
        event = decode_frame(line.rstrip("\r\n"))
        if event is not None:
            yield event
