import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from banquet_agent.core.config import settings

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/spreadsheets",
]
EXPIRY_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class GoogleAuthError(RuntimeError):
    """OAuth 코드 교환 실패 또는 자격 증명 없음"""


def _client_config() -> Dict[str, str]:
    if not settings.GOOGLE_CLIENT_ID or not settings.GOOGLE_CLIENT_SECRET:
        raise GoogleAuthError("GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET not configured")
    return {
        "client_id": settings.GOOGLE_CLIENT_ID,
        "client_secret": settings.GOOGLE_CLIENT_SECRET,
        "redirect_uri": settings.GOOGLE_REDIRECT_URI,
    }


def build_auth_url() -> str:
    """동의 화면 URL. refresh_token 을 받기 위해 offline + consent 로 요청한다."""
    cfg = _client_config()
    params = {
        "client_id": cfg["client_id"],
        "redirect_uri": cfg["redirect_uri"],
        "response_type": "code",
        "scope": " ".join(SCOPES),
        "access_type": "offline",
        "include_granted_scopes": "true",
        "prompt": "consent",
    }
    return AUTH_URI + "?" + urlencode(params)


def exchange_code(code: str, tokens_file: Optional[Path] = None) -> Dict[str, Any]:
    """인가 코드를 토큰으로 교환하고 파일에 저장한다."""
    if not code:
        raise GoogleAuthError("Missing authorization code")
    cfg = _client_config()

    try:
        res = requests.post(
            TOKEN_URI,
            data={
                "code": code,
                "client_id": cfg["client_id"],
                "client_secret": cfg["client_secret"],
                "redirect_uri": cfg["redirect_uri"],
                "grant_type": "authorization_code",
            },
            timeout=30,
        )
    except requests.RequestException as e:
        raise GoogleAuthError(f"Token exchange request failed: {e}") from e

    if res.status_code != 200:
        logger.error("Google token exchange failed: %s %s", res.status_code, res.text[:400])
        raise GoogleAuthError("Failed to retrieve tokens")

    tokens = res.json()
    if tokens.get("expires_in"):
        # google-auth 가 읽는 형식 (UTC, 초 단위)
        expiry = datetime.utcnow() + timedelta(seconds=int(tokens["expires_in"]))
        tokens["expiry"] = expiry.strftime(EXPIRY_FORMAT)
    path = Path(tokens_file or settings.GOOGLE_TOKENS_FILE)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(tokens, f, indent=2)
    logger.info("Google tokens saved to %s (refresh token: %s)", path, bool(tokens.get("refresh_token")))
    return tokens


def _load_token_info(tokens_file: Path) -> Optional[Dict[str, Any]]:
    if tokens_file.exists():
        try:
            with open(tokens_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read %s: %s", tokens_file, e)
        else:
            info = {"token": data.get("access_token"), "refresh_token": data.get("refresh_token")}
            if data.get("expiry"):
                info["expiry"] = data["expiry"]
            return info
    if settings.GOOGLE_REFRESH_TOKEN:
        return {"token": None, "refresh_token": settings.GOOGLE_REFRESH_TOKEN}
    return None


def load_credentials(tokens_file: Optional[Path] = None) -> Credentials:
    """저장된 토큰(또는 GOOGLE_REFRESH_TOKEN)으로 자격 증명을 만든다."""
    info = _load_token_info(Path(tokens_file or settings.GOOGLE_TOKENS_FILE))
    if not info or not (info.get("token") or info.get("refresh_token")):
        raise GoogleAuthError("No Google credentials; run the /auth flow first")

    cfg = _client_config()
    try:
        creds = Credentials.from_authorized_user_info(
            {
                **info,
                "client_id": cfg["client_id"],
                "client_secret": cfg["client_secret"],
                "token_uri": TOKEN_URI,
            },
            scopes=SCOPES,
        )
    except ValueError as e:
        raise GoogleAuthError(f"Invalid stored Google credentials: {e}") from e
    # 만료 시각을 모르는 토큰은 이미 만료된 것으로 본다
    stale = creds.expired or not creds.token or creds.expiry is None
    if stale and creds.refresh_token:
        creds.refresh(Request())
    return creds


def calendar_service():
    return build("calendar", "v3", credentials=load_credentials(), cache_discovery=False)


def sheets_service():
    return build("sheets", "v4", credentials=load_credentials(), cache_discovery=False)
