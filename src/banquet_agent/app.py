import logging
from datetime import datetime
from pathlib import Path

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse, StreamingResponse

from banquet_agent.core.config import settings
from banquet_agent.schemas.chat import AssistantIn, HealthOut, SessionStatus
from banquet_agent.schemas.events import encode_event
from banquet_agent.services import google_auth
from banquet_agent.services.chat_service import ChatService, build_chat_service
from banquet_agent.services.session_store import SessionStore, build_session_store

# -----------------------------------------------------------------------------
# LOGGING
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("banquet_agent")

STATIC_DIR = Path(__file__).parent / "static"
VERSION = "0.1.0"

app = FastAPI(
    title="Banquet Booking Assistant API",
    description="""
    ## Banquet Booking Assistant API

    레스토랑 연회 예약을 위한 대화형 AI 어시스턴트 API 입니다.

    ### 주요 기능
    - 단계별 예약 흐름 또는 LLM 기반 예약 정보 추출 (`ASSISTANT_MODE`)
    - SSE(`text/event-stream`) 스트리밍 응답
    - 세션 기반 대화 관리 (memory / file / redis)
    - Google Calendar 일정 + Google Sheets 행으로 예약 저장

    ### 사용 예시
    1. 대화 시작: `POST /api/assistant` `{"message": "I want to book a birthday party"}`
    2. 첫 프레임의 `sessionId` 를 다음 요청에 함께 전송
    3. 예약 마감 시 `[BOOKING_SAVED]` 프레임, 항상 `[DONE]` 으로 종료

    ### 환경 변수
    - `OPENAI_API_KEY` 또는 `AZURE_OPENAI_*`: LLM 설정
    - `SESSION_BACKEND`, `SESSIONS_DIR`, `REDIS_URL`: 세션 저장소
    - `GOOGLE_CLIENT_ID`, `GOOGLE_CLIENT_SECRET`, `CALENDAR_ID`, `SHEET_ID`: Google 연동
    """,
    version=VERSION,
    docs_url=None,  # 기본 docs 비활성화
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------------------------------------------------------------------
# SERVICES
# -----------------------------------------------------------------------------
_store: SessionStore | None = None
_chat_service: ChatService | None = None


def get_session_store() -> SessionStore:
    global _store
    if _store is None:
        _store = build_session_store(settings)
        logger.info("Session backend: %s", settings.SESSION_BACKEND)
    return _store


def get_chat_service(store: SessionStore = Depends(get_session_store)) -> ChatService:
    global _chat_service
    if _chat_service is None:
        _chat_service = build_chat_service(store)
        logger.info("Assistant mode: %s", _chat_service.mode)
    return _chat_service


# 커스텀 Swagger UI 설정
@app.get("/docs", include_in_schema=False)
async def custom_swagger_ui_html():
    return get_swagger_ui_html(
        openapi_url=app.openapi_url,
        title=app.title + " - Swagger UI",
        swagger_ui_parameters={
            "defaultModelsExpandDepth": -1,
            "displayRequestDuration": True,
            "docExpansion": "list",
            "tryItOutEnabled": True,
        },
    )


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema["tags"] = [
        {"name": "대화", "description": "어시스턴트 대화 (SSE 스트리밍)"},
        {"name": "세션 관리", "description": "세션 조회 및 초기화"},
        {"name": "Google 인증", "description": "Calendar / Sheets OAuth 연동"},
    ]
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi


@app.get("/")
def root():
    """루트 엔드포인트 - 서비스 상태 확인"""
    return {
        "status": "ok",
        "service": "banquet-agent",
        "version": VERSION,
        "mode": settings.ASSISTANT_MODE,
        "timestamp": datetime.utcnow().isoformat(),
        "docs": "/docs",
        "chat": "/chat",
    }


@app.get("/livez")
def livez():
    """라이브니스 체크 - 프로세스가 살아있는지 확인"""
    return {"status": "alive", "timestamp": datetime.utcnow().isoformat()}


@app.get("/healthz")
def healthz():
    """헬스체크 - 기본 서비스 상태 확인"""
    return {"status": "ok", "timestamp": datetime.utcnow().isoformat()}


@app.get("/readyz")
def readyz(response: Response, store: SessionStore = Depends(get_session_store)):
    """레디니스 체크 - 세션 저장소와 LLM 설정 확인"""
    store_ok = store.healthcheck()
    llm_ok = settings.llm_configured

    if not (store_ok and llm_ok):
        response.status_code = 503
        return {
            "status": "not_ready",
            "session_store_ok": store_ok,
            "llm_configured": llm_ok,
            "timestamp": datetime.utcnow().isoformat(),
        }

    return {
        "status": "ready",
        "dependencies": {"session_store": store_ok, "llm": llm_ok},
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.get("/chat", response_class=HTMLResponse, include_in_schema=False)
def chat_page():
    """브라우저 채팅 클라이언트"""
    return HTMLResponse((STATIC_DIR / "index.html").read_text(encoding="utf-8"))


# -----------------------------------------------------------------------------
# API 라우터
# -----------------------------------------------------------------------------
api_router = APIRouter(prefix="/api")


@api_router.get("/health", response_model=HealthOut, tags=["대화"])
def health():
    return HealthOut(status="ok", timestamp=datetime.utcnow().isoformat())


@api_router.post("/assistant", tags=["대화"])
async def assistant(payload: AssistantIn, chat_service: ChatService = Depends(get_chat_service)):
    """
    어시스턴트 메시지 처리 (SSE 스트리밍)

    ### 요청
    ```json
    {"sessionId": "optional-session-id", "message": "I want to book a birthday party"}
    ```

    ### 응답 프레임
    - `data: {"sessionId": "..."}` (항상 첫 프레임)
    - `data: <text>` (줄바꿈은 `\\n` 으로 이스케이프)
    - `data: [BOOKING_SAVED]`
    - `data: [DONE]` (항상 마지막 프레임)
    """

    async def frames():
        async for event in chat_service.stream_turn(payload.session_id, payload.message):
            yield encode_event(event)

    return StreamingResponse(
        frames(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@api_router.get("/sessions/{session_id}", response_model=SessionStatus, tags=["세션 관리"])
def get_session_status(session_id: str, store: SessionStore = Depends(get_session_store)):
    """세션 상태 조회 - 현재 단계, 채워진 예약 필드, 대화 수"""
    session = store.get(session_id) if store.resolve_id(session_id) == session_id else None
    if session is None:
        return SessionStatus(session_id=session_id, is_valid=False)
    return SessionStatus(
        session_id=session_id,
        is_valid=True,
        step=session.step.value,
        message_count=len(session.history),
        booking=session.booking.to_dict(),
        missing_info=session.booking.get_missing_fields(),
    )


@api_router.delete("/sessions/{session_id}", tags=["세션 관리"])
def reset_session(session_id: str, store: SessionStore = Depends(get_session_store)):
    """세션 초기화 - 예약 필드와 대화 기록을 지우고 ID 는 유지"""
    if store.resolve_id(session_id) != session_id or store.get(session_id) is None:
        raise HTTPException(status_code=404, detail="세션을 찾을 수 없습니다.")
    session = store.reset(session_id)
    return {"message": "세션이 초기화되었습니다.", "session_id": session.session_id, "step": session.step.value}


app.include_router(api_router)


# -----------------------------------------------------------------------------
# Google OAuth
# -----------------------------------------------------------------------------
@app.get("/auth", tags=["Google 인증"])
def auth():
    """Google 동의 화면으로 리다이렉트"""
    try:
        return RedirectResponse(google_auth.build_auth_url())
    except google_auth.GoogleAuthError as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/auth/callback", tags=["Google 인증"])
def auth_callback(code: str | None = None):
    """인가 코드를 토큰으로 교환하고 tokens 파일에 저장"""
    if not code:
        raise HTTPException(status_code=400, detail="Missing authorization code.")
    try:
        google_auth.exchange_code(code)
    except google_auth.GoogleAuthError as e:
        logger.error("Error retrieving tokens: %s", e)
        raise HTTPException(status_code=400, detail="Failed to retrieve tokens.")
    return PlainTextResponse("Authorization successful! Tokens saved.")


# 에러 핸들러
@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "error": "내부 서버 오류",
            "detail": str(exc),
            "timestamp": datetime.utcnow().isoformat(),
        },
    )


def serve():
    """uvicorn 으로 API 서버 실행"""
    import uvicorn

    uvicorn.run("banquet_agent.app:app", host=settings.HOST, port=settings.PORT)
