import logging
from datetime import datetime
from typing import AsyncIterator, Optional

from banquet_agent import agent_runner
from banquet_agent.core.config import settings
from banquet_agent.core.text import chunk_text, clean_text
from banquet_agent.schemas.events import BookingSaved, Done, SessionAssigned, StreamEvent, TextChunk
from banquet_agent.schemas.sessions import Session
from banquet_agent.services.extraction import BookingExtractor
from banquet_agent.services.persistence import BookingPersistence
from banquet_agent.services.session_store import SessionStore
from banquet_agent.services.step_machine import BookingStepMachine

logger = logging.getLogger(__name__)

MODE_STEPS = "steps"
MODE_EXTRACTION = "extraction"

AI_ERROR_MESSAGE = "Sorry, the AI backend had a problem. Please try again later."
INTERNAL_ERROR_MESSAGE = "Sorry, something went wrong on our side. Please try again later."


class ChatService:
    """한 턴의 메시지를 처리하고 스트림 이벤트를 순서대로 내보낸다.

    첫 이벤트는 항상 SessionAssigned, 마지막은 항상 Done 이다.
    """

    def __init__(
        self,
        store: SessionStore,
        persistence: BookingPersistence,
        mode: str = MODE_STEPS,
        machine: Optional[BookingStepMachine] = None,
        extractor: Optional[BookingExtractor] = None,
        chunk_size: Optional[int] = None,
        chat_window: Optional[int] = None,
    ):
        if mode not in (MODE_STEPS, MODE_EXTRACTION):
            raise ValueError(f"Unknown assistant mode: {mode}")
        self.store = store
        self.persistence = persistence
        self.mode = mode
        self.machine = machine or BookingStepMachine()
        self.extractor = extractor or BookingExtractor()
        self.chunk_size = chunk_size or settings.STREAM_CHUNK_SIZE
        self.chat_window = chat_window if chat_window is not None else settings.CHAT_HISTORY_WINDOW

    async def stream_turn(
        self,
        session_id: Optional[str],
        message: Optional[str],
        now: Optional[datetime] = None,
    ) -> AsyncIterator[StreamEvent]:
        sid = self.store.resolve_id(session_id)
        yield SessionAssigned(session_id=sid)

        text = clean_text(message)
        if not text:
            yield Done()
            return
        logger.info("[%s] user: %s", sid, text)

        try:
            session = self.store.get_or_create(sid)
            if self.mode == MODE_STEPS:
                turn = self._steps_turn(session, text, now)
            else:
                turn = self._extraction_turn(session, text)
            async for event in turn:
                yield event
        except Exception:
            logger.exception("Error while handling assistant turn for %s", sid)
            yield TextChunk(text=INTERNAL_ERROR_MESSAGE)

        yield Done()

    async def _chunks(self, text: str) -> AsyncIterator[StreamEvent]:
        """고정 문자열을 정리한 뒤 일정 크기 조각으로 나눠 보낸다."""
        for piece in chunk_text(clean_text(text, keep_newlines=True), self.chunk_size):
            yield TextChunk(text=piece)

    async def _stream_llm(self, session: Session, prompt) -> AsyncIterator[StreamEvent]:
        """모델 응답을 토큰 단위로 그대로 전달하고 기록에 남긴다."""
        history = session.history[-self.chat_window :] if self.chat_window > 0 else session.history
        reply = ""
        try:
            async for token in agent_runner.astream_reply(prompt, history):
                reply += token
                yield TextChunk(text=token)
        except Exception as e:
            logger.error("LLM stream error: %s", e)
            if not reply:
                yield TextChunk(text=AI_ERROR_MESSAGE)
        if reply:
            session.add_message("assistant", reply)

    async def _steps_turn(
        self, session: Session, text: str, now: Optional[datetime]
    ) -> AsyncIterator[StreamEvent]:
        session.add_message("user", text)
        outcome = self.machine.advance(session, text, now=now)

        if outcome.free_form:
            async for event in self._stream_llm(session, agent_runner.CHAT_PROMPT):
                yield event
            self.store.save(session)
            return

        if outcome.completed is None:
            session.add_message("assistant", outcome.reply)
            self.store.save(session)
            async for event in self._chunks(outcome.reply):
                yield event
            return

        # 예약 마감: 저장 결과와 상관없이 세션은 초기화한다
        try:
            result = await self.persistence.save(outcome.completed)
        finally:
            self.store.reset(session.session_id)

        async for event in self._chunks(outcome.reply):
            yield event
        if result.saved:
            yield BookingSaved()

    async def _extraction_turn(self, session: Session, text: str) -> AsyncIterator[StreamEvent]:
        session.add_message("user", text)

        async for event in self._stream_llm(session, agent_runner.HOST_PROMPT):
            yield event
        self.store.save(session)

        booking = await self.extractor.extract(session.history)
        if booking is None:
            logger.info("[%s] not enough information for a booking yet", session.session_id)
            return
        if session.last_saved_booking == booking:
            logger.info("[%s] booking already saved, skipping", session.session_id)
            return

        session.booking = booking
        result = await self.persistence.save(booking)
        if result.saved:
            session.last_saved_booking = booking
            yield BookingSaved()
        self.store.save(session)


def build_chat_service(store: SessionStore) -> ChatService:
    return ChatService(
        store=store,
        persistence=BookingPersistence(),
        mode=settings.ASSISTANT_MODE,
    )
