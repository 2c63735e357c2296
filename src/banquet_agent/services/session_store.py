import json
import logging
import re
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import redis
from pydantic import ValidationError

from banquet_agent.schemas.sessions import Session

logger = logging.getLogger(__name__)

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def new_session_id() -> str:
    return str(uuid.uuid4())


class SessionStore(ABC):
    """세션 저장소 공통 동작.

    하위 클래스는 직렬화된 세션 딕셔너리의 읽기/쓰기/삭제만 구현한다.
    동시 요청에 대한 잠금은 없다 (마지막 쓰기가 이긴다).
    """

    def resolve_id(self, session_id: Optional[str]) -> str:
        """안전한 토큰이면 그대로, 아니면 새 세션 ID 를 돌려준다."""
        if session_id and _SESSION_ID_RE.match(session_id):
            return session_id
        if session_id:
            logger.warning("Rejected malformed session id %r", session_id[:64])
        return new_session_id()

    def get(self, session_id: str) -> Optional[Session]:
        data = self._read(session_id)
        if data is None:
            return None
        try:
            return Session.model_validate(data)
        except ValidationError as e:
            logger.warning("Discarding corrupt session %s: %s", session_id, e)
            return None

    def get_or_create(self, session_id: Optional[str] = None) -> Session:
        sid = self.resolve_id(session_id)
        session = self.get(sid)
        if session is None:
            session = Session(session_id=sid)
            self.save(session)
            logger.info("Created session %s", sid)
        return session

    def save(self, session: Session) -> None:
        session.updated_at = datetime.utcnow().isoformat()
        self._write(session.session_id, session.to_json_dict())

    def reset(self, session_id: str) -> Session:
        """처음 인사 단계로 되돌린다. 예약 필드와 대화 기록은 버리고 ID 는 유지."""
        session = Session(session_id=session_id)
        self.save(session)
        logger.info("Reset session %s", session_id)
        return session

    @abstractmethod
    def delete(self, session_id: str) -> bool: ...

    @abstractmethod
    def _read(self, session_id: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def _write(self, session_id: str, data: Dict[str, Any]) -> None: ...

    def healthcheck(self) -> bool:
        return True


class InMemorySessionStore(SessionStore):
    """프로세스 메모리 저장소. 프로세스가 살아있는 동안만 유지된다."""

    def __init__(self):
        self._sessions: Dict[str, Dict[str, Any]] = {}

    def _read(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self._sessions.get(session_id)

    def _write(self, session_id: str, data: Dict[str, Any]) -> None:
        self._sessions[session_id] = data

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None


class FileSessionStore(SessionStore):
    """세션 하나당 JSON 파일 하나 (sessions/<id>.json)"""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Path:
        return self.directory / f"{session_id}.json"

    def _read(self, session_id: str) -> Optional[Dict[str, Any]]:
        path = self._path(session_id)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read session file %s: %s", path, e)
            return None

    def _write(self, session_id: str, data: Dict[str, Any]) -> None:
        with open(self._path(session_id), "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)

    def delete(self, session_id: str) -> bool:
        path = self._path(session_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def healthcheck(self) -> bool:
        return self.directory.is_dir()


class RedisSessionStore(SessionStore):
    """Redis 저장소. 키는 banquet:sess:<id>, ttl_seconds 가 0 이면 만료 없음.

    연결은 첫 사용 시점에 만든다 (REDIS_URL 이 없으면 ValueError).
    rediss:// 스킴이면 redis-py 가 자동으로 TLS 를 사용한다.
    """

    KEY_PREFIX = "banquet:sess:"

    def __init__(self, url: Optional[str] = None, ttl_seconds: int = 0, client: Optional[redis.Redis] = None):
        self.url = url
        self.ttl_seconds = ttl_seconds
        self._client = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            if not self.url:
                raise ValueError("REDIS_URL is not set")
            self._client = redis.from_url(self.url, decode_responses=True)
        return self._client

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    def _read(self, session_id: str) -> Optional[Dict[str, Any]]:
        raw = self.client.get(self._key(session_id))
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Invalid session data for %s: %s", session_id, e)
            return None

    def _write(self, session_id: str, data: Dict[str, Any]) -> None:
        payload = json.dumps(data, ensure_ascii=False)
        if self.ttl_seconds > 0:
            self.client.setex(self._key(session_id), self.ttl_seconds, payload)
        else:
            self.client.set(self._key(session_id), payload)

    def delete(self, session_id: str) -> bool:
        return self.client.delete(self._key(session_id)) > 0

    def healthcheck(self) -> bool:
        try:
            return bool(self.client.ping())
        except (ValueError, redis.RedisError) as e:
            logger.warning("Redis session store not reachable: %s", e)
            return False


def build_session_store(settings) -> SessionStore:
    backend = settings.SESSION_BACKEND
    if backend == "file":
        return FileSessionStore(settings.SESSIONS_DIR)
    if backend == "redis":
        return RedisSessionStore(url=settings.REDIS_URL, ttl_seconds=settings.SESSION_TTL_SECONDS)
    if backend != "memory":
        logger.warning("Unknown SESSION_BACKEND %r, falling back to memory", backend)
    return InMemorySessionStore()
