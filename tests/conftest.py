import pytest
import os
from unittest.mock import Mock

import redis

from banquet_agent.schemas.sessions import BookingRecord
from banquet_agent.services.persistence import PersistenceResult
from banquet_agent.services.session_store import InMemorySessionStore


class FakeChunk:
    """LangChain 메시지 청크 흉내 (content 만 사용)"""

    def __init__(self, content: str):
        self.content = content


class FakeLLM:
    """테스트용 가짜 LLM"""

    def __init__(self):
        self.tokens = ["Ciao! ", "How can I ", "help you today?"]
        self.extraction = "{}"
        self.fail = False
        self.stream_calls = []
        self.extraction_calls = []

    async def astream(self, messages):
        """가짜 토큰 스트림"""
        self.stream_calls.append(messages)
        if self.fail:
            raise RuntimeError("model backend down")
        for token in self.tokens:
            yield FakeChunk(token)

    async def ainvoke(self, messages):
        """가짜 추출 응답 반환"""
        self.extraction_calls.append(messages)
        if self.fail:
            raise RuntimeError("model backend down")
        return FakeChunk(self.extraction)


class FakePersistence:
    """Google 호출 없이 저장 요청만 기록"""

    def __init__(self, calendar_ok: bool = True, sheet_ok: bool = True):
        self.calendar_ok = calendar_ok
        self.sheet_ok = sheet_ok
        self.saved = []

    async def save(self, booking: BookingRecord) -> PersistenceResult:
        self.saved.append(booking)
        if not booking.is_complete():
            return PersistenceResult(skipped=True)
        return PersistenceResult(calendar_ok=self.calendar_ok, sheet_ok=self.sheet_ok)


@pytest.fixture(autouse=True)
def fake_llm(monkeypatch):
    """테스트 환경에서 LLM 을 모킹"""
    llm = FakeLLM()
    # 테스트 환경인지 확인
    if os.getenv("TESTING") == "true" or os.getenv("PYTEST_CURRENT_TEST"):
        monkeypatch.setattr("banquet_agent.agent_runner.get_llm", lambda: llm)
    return llm


@pytest.fixture
def mock_redis(monkeypatch):
    """Redis 모킹"""
    mock_client = Mock()
    mock_client.get.return_value = None
    mock_client.set.return_value = True
    mock_client.setex.return_value = True
    mock_client.delete.return_value = 1
    mock_client.ping.return_value = True
    mock_client.urls = []

    def from_url(url, **kwargs):
        mock_client.urls.append(url)
        return mock_client

    monkeypatch.setattr(redis, "from_url", from_url)
    return mock_client


@pytest.fixture
def memory_store():
    return InMemorySessionStore()


@pytest.fixture
def fake_persistence():
    return FakePersistence()


@pytest.fixture
def complete_booking():
    return BookingRecord(
        date="2025-11-01",
        start_time="6pm",
        end_time="9pm",
        party_size=40,
        event_type="Birthday Party",
        food="pasta and pizza",
        email="jane@example.com",
        phone="330-555-0100",
    )
