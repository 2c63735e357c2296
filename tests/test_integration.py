import pytest
import pytest_asyncio
import httpx
import sys
from pathlib import Path
from typing import List

# 프로젝트 루트를 Python 경로에 추가
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from banquet_agent.app import app, get_chat_service, get_session_store
from banquet_agent.core.config import settings
from banquet_agent.schemas.events import BookingSaved, Done, SessionAssigned, TextChunk, decode_lines
from banquet_agent.services import google_auth
from banquet_agent.services.chat_service import ChatService, MODE_EXTRACTION
from banquet_agent.services.step_machine import DATE_PROMPT, TIME_PROMPT


@pytest.fixture
def chat_service(memory_store, fake_persistence):
    return ChatService(memory_store, fake_persistence)


@pytest_asyncio.fixture
async def client(chat_service):
    """테스트용 HTTP 클라이언트"""
    app.dependency_overrides[get_session_store] = lambda: chat_service.store
    app.dependency_overrides[get_chat_service] = lambda: chat_service
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def send(client: httpx.AsyncClient, message: str, session_id: str = None) -> List:
    """메시지 하나를 보내고 SSE 프레임을 이벤트 목록으로 돌려준다."""
    payload = {"message": message}
    if session_id:
        payload["sessionId"] = session_id
    response = await client.post("/api/assistant", json=payload)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    return list(decode_lines(response.text.split("\n")))


def text_of(events) -> str:
    return "".join(e.text for e in events if isinstance(e, TextChunk))


@pytest.mark.integration
class TestAPIEndpoints:
    """API 엔드포인트 통합 테스트"""

    @pytest.mark.asyncio
    async def test_health_check(self, client: httpx.AsyncClient):
        """헬스체크 엔드포인트 테스트"""
        response = await client.get("/healthz")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert "timestamp" in data

    @pytest.mark.asyncio
    async def test_api_health(self, client: httpx.AsyncClient):
        response = await client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_livez_check(self, client: httpx.AsyncClient):
        """라이브니스 체크 엔드포인트 테스트"""
        response = await client.get("/livez")
        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    @pytest.mark.asyncio
    async def test_readyz(self, client: httpx.AsyncClient, monkeypatch):
        """레디니스 체크 - LLM 키 유무에 따라 200 / 503"""
        monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
        monkeypatch.setattr(settings, "AZURE_OPENAI_API_KEY", "")
        response = await client.get("/readyz")
        assert response.status_code == 503
        assert response.json()["llm_configured"] is False

        monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
        response = await client.get("/readyz")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    @pytest.mark.asyncio
    async def test_root_endpoint(self, client: httpx.AsyncClient):
        """루트 엔드포인트 테스트"""
        response = await client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "banquet-agent"
        assert "version" in data
        assert "docs" in data

    @pytest.mark.asyncio
    async def test_docs_endpoint(self, client: httpx.AsyncClient):
        """Swagger UI 엔드포인트 테스트"""
        response = await client.get("/docs")
        assert response.status_code == 200
        assert "text/html" in response.headers.get("content-type", "")
        assert "swagger-ui" in response.text.lower()

    @pytest.mark.asyncio
    async def test_chat_page(self, client: httpx.AsyncClient):
        response = await client.get("/chat")
        assert response.status_code == 200
        assert "Banquet Booking Assistant" in response.text
        assert "/api/assistant" in response.text


@pytest.mark.integration
class TestAssistantStream:
    """SSE 대화 통합 테스트"""

    @pytest.mark.asyncio
    async def test_frame_order(self, client: httpx.AsyncClient):
        events = await send(client, "I want to book a birthday party")
        assert isinstance(events[0], SessionAssigned)
        assert events[-1] == Done()
        assert text_of(events) == DATE_PROMPT

    @pytest.mark.asyncio
    async def test_empty_message(self, client: httpx.AsyncClient, memory_store):
        events = await send(client, "   ", session_id="empty-1")
        assert events == [SessionAssigned(session_id="empty-1"), Done()]
        assert memory_store.get("empty-1") is None

    @pytest.mark.asyncio
    async def test_missing_message_field(self, client: httpx.AsyncClient):
        response = await client.post("/api/assistant", json={})
        events = list(decode_lines(response.text.split("\n")))
        assert isinstance(events[0], SessionAssigned)
        assert events[1:] == [Done()]

    @pytest.mark.asyncio
    async def test_malformed_session_id_replaced(self, client: httpx.AsyncClient):
        events = await send(client, "hello", session_id="../../etc/passwd")
        assert events[0].session_id != "../../etc/passwd"

    @pytest.mark.asyncio
    async def test_date_is_normalized(self, client: httpx.AsyncClient, memory_store):
        events = await send(client, "I want to book a birthday party")
        session_id = events[0].session_id

        events = await send(client, "November 1st", session_id)
        assert events[0].session_id == session_id
        assert text_of(events) == TIME_PROMPT
        assert memory_store.get(session_id).booking.date.endswith("-11-01")

    @pytest.mark.asyncio
    async def test_full_booking(self, client: httpx.AsyncClient, memory_store, fake_persistence):
        events = await send(client, "I'd like to book a banquet")
        session_id = events[0].session_id
        for message in [
            "2030-06-14", "6pm-9pm", "60 guests", "wedding", "family style Italian",
            "jane@example.com", "330-555-0100", "white flowers",
        ]:
            await send(client, message, session_id)

        events = await send(client, "no that's it", session_id)
        assert events[-2] == BookingSaved()
        assert events[-1] == Done()
        assert "Date: 2030-06-14" in text_of(events)

        booking = fake_persistence.saved[0]
        assert booking.event_type == "Wedding Reception"
        assert booking.party_size == 60
        assert (booking.start_time, booking.end_time) == ("6pm", "9pm")

        response = await client.get(f"/api/sessions/{session_id}")
        assert response.json()["step"] == "greeting"
        assert response.json()["message_count"] == 0

    @pytest.mark.asyncio
    async def test_extraction_mode(self, client: httpx.AsyncClient, chat_service, fake_llm):
        chat_service.mode = MODE_EXTRACTION
        fake_llm.extraction = (
            '```json\n{"date": "2030-06-14", "startTime": "6:00 PM", "partySize": 60, '
            '"eventType": "Wedding Reception", "email": "jane@example.com"}\n```'
        )
        events = await send(client, "Wedding for 60 on June 14 2030 at 6pm, jane@example.com")
        assert text_of(events) == "Ciao! How can I help you today?"
        assert events[-2] == BookingSaved()
        assert events[-1] == Done()


@pytest.mark.integration
class TestSessionManagement:
    """세션 관리 통합 테스트"""

    @pytest.mark.asyncio
    async def test_get_session_status(self, client: httpx.AsyncClient):
        events = await send(client, "I want to book a banquet")
        session_id = events[0].session_id

        response = await client.get(f"/api/sessions/{session_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["is_valid"] is True
        assert data["step"] == "awaiting_date"
        assert data["message_count"] == 2
        assert "date" in data["missing_info"]

    @pytest.mark.asyncio
    async def test_unknown_session(self, client: httpx.AsyncClient):
        response = await client.get("/api/sessions/does-not-exist")
        assert response.status_code == 200
        assert response.json()["is_valid"] is False

    @pytest.mark.asyncio
    async def test_reset_session(self, client: httpx.AsyncClient):
        events = await send(client, "I want to book a banquet")
        session_id = events[0].session_id

        response = await client.delete(f"/api/sessions/{session_id}")
        assert response.status_code == 200
        assert response.json()["step"] == "greeting"

        response = await client.delete("/api/sessions/does-not-exist")
        assert response.status_code == 404


@pytest.mark.integration
class TestGoogleAuthEndpoints:
    """Google OAuth 엔드포인트 테스트"""

    @pytest.mark.asyncio
    async def test_auth_redirect(self, client: httpx.AsyncClient, monkeypatch):
        monkeypatch.setattr(settings, "GOOGLE_CLIENT_ID", "client-123")
        monkeypatch.setattr(settings, "GOOGLE_CLIENT_SECRET", "secret-456")
        response = await client.get("/auth")
        assert response.status_code == 307
        assert response.headers["location"].startswith(google_auth.AUTH_URI)

    @pytest.mark.asyncio
    async def test_auth_not_configured(self, client: httpx.AsyncClient, monkeypatch):
        monkeypatch.setattr(settings, "GOOGLE_CLIENT_ID", "")
        response = await client.get("/auth")
        assert response.status_code == 500

    @pytest.mark.asyncio
    async def test_callback_without_code(self, client: httpx.AsyncClient):
        response = await client.get("/auth/callback")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_callback_exchange_failure(self, client: httpx.AsyncClient, monkeypatch):
        def fail(code):
            raise google_auth.GoogleAuthError("Failed to retrieve tokens")

        monkeypatch.setattr(google_auth, "exchange_code", fail)
        response = await client.get("/auth/callback", params={"code": "bad"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_callback_success(self, client: httpx.AsyncClient, monkeypatch):
        monkeypatch.setattr(google_auth, "exchange_code", lambda code: {"refresh_token": "rt"})
        response = await client.get("/auth/callback", params={"code": "good"})
        assert response.status_code == 200
        assert "Authorization successful" in response.text
