import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

# 프로젝트 루트에서 가장 가까운 .env.local 을 먼저 로드하고, 없으면 .env 사용
load_dotenv(find_dotenv(".env.local"))
load_dotenv(find_dotenv(".env"))


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class Settings:
    """환경 변수 기반 설정. 인스턴스 생성 시점의 환경을 읽는다."""

    def __init__(self):
        # 동작 모드: steps(단계별 예약 흐름) | extraction(LLM 추출)
        self.ASSISTANT_MODE = os.getenv("ASSISTANT_MODE", "steps").strip().lower()

        # 세션 저장소: memory | file | redis
        self.SESSION_BACKEND = os.getenv("SESSION_BACKEND", "memory").strip().lower()
        self.SESSIONS_DIR = Path(os.getenv("SESSIONS_DIR", "sessions"))
        self.REDIS_URL = os.getenv("REDIS_URL", "")
        self.SESSION_TTL_SECONDS = _get_int("SESSION_TTL_SECONDS", 0)

        # LLM
        self.OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
        self.OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        self.AZURE_OPENAI_API_KEY = os.getenv("AZURE_OPENAI_API_KEY", "")
        self.AZURE_OPENAI_ENDPOINT = os.getenv("AZURE_OPENAI_ENDPOINT", "")
        self.AZURE_OPENAI_DEPLOYMENT = os.getenv("AZURE_OPENAI_DEPLOYMENT", "")
        self.AZURE_OPENAI_API_VERSION = os.getenv(
            "AZURE_OPENAI_API_VERSION", "2024-12-01-preview"
        )
        self.LLM_TEMPERATURE = _get_float("LLM_TEMPERATURE", 0.7)
        self.EXTRACTION_HISTORY_WINDOW = _get_int("EXTRACTION_HISTORY_WINDOW", 15)
        self.CHAT_HISTORY_WINDOW = _get_int("CHAT_HISTORY_WINDOW", 40)
        self.STREAM_CHUNK_SIZE = _get_int("STREAM_CHUNK_SIZE", 40)

        # Google OAuth / Calendar / Sheets
        self.GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
        self.GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
        self.GOOGLE_REDIRECT_URI = os.getenv(
            "GOOGLE_REDIRECT_URI", "http://localhost:8000/auth/callback"
        )
        self.GOOGLE_REFRESH_TOKEN = os.getenv("GOOGLE_REFRESH_TOKEN", "")
        self.GOOGLE_TOKENS_FILE = Path(os.getenv("GOOGLE_TOKENS_FILE", "tokens.json"))
        self.CALENDAR_ID = os.getenv("CALENDAR_ID", "primary")
        self.SHEET_ID = os.getenv("SHEET_ID", "")
        self.SHEET_RANGE = os.getenv("SHEET_RANGE", "Bookings!A1")
        self.TIMEZONE = os.getenv("TIMEZONE", "America/New_York")
        self.PERSISTENCE_TIMEOUT_SECONDS = _get_float("PERSISTENCE_TIMEOUT_SECONDS", 30.0)

        # 안내 문구에 들어가는 업장 정보
        self.VENUE_NAME = os.getenv("VENUE_NAME", "Salvatore's")
        self.VENUE_PHONE = os.getenv("VENUE_PHONE", "330.422.3304")
        self.VENUE_EMAIL = os.getenv("VENUE_EMAIL", "salvatoresHowland@gmail.com")

        # 서버
        self.CORS_ORIGINS = [
            o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()
        ]
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.HOST = os.getenv("HOST", "0.0.0.0")
        self.PORT = _get_int("PORT", 8000)

    @property
    def llm_configured(self) -> bool:
        return bool(self.OPENAI_API_KEY or self.AZURE_OPENAI_API_KEY)


settings = Settings()
