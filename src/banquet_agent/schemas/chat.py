from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class AssistantIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")
    message: Optional[str] = ""


class HealthOut(BaseModel):
    status: str
    timestamp: str


class SessionStatus(BaseModel):
    session_id: str
    is_valid: bool
    step: Optional[str] = None
    message_count: int = 0
    booking: Dict[str, Any] = {}
    missing_info: list[str] = []
