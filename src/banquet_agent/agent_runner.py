import logging
import os
from typing import AsyncIterator, List, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder
from langchain_openai import AzureChatOpenAI, ChatOpenAI

from banquet_agent.core.config import settings
from banquet_agent.schemas.sessions import Message

logger = logging.getLogger(__name__)


class LLMUnavailableError(RuntimeError):
    """LLM API 키가 설정되지 않았거나 테스트 환경이라 모델을 쓸 수 없음"""


_llm = None


def get_llm():
    """환경에 따라 LLM 을 반환하는 함수. 사용할 수 없으면 None."""
    global _llm
    # 테스트 환경인지 확인
    if os.getenv("TESTING") == "true" or os.getenv("PYTEST_CURRENT_TEST"):
        return None
    if _llm is not None:
        return _llm

    if settings.AZURE_OPENAI_API_KEY:
        _llm = AzureChatOpenAI(
            azure_deployment=settings.AZURE_OPENAI_DEPLOYMENT,
            api_version=settings.AZURE_OPENAI_API_VERSION,
            api_key=settings.AZURE_OPENAI_API_KEY,
            azure_endpoint=settings.AZURE_OPENAI_ENDPOINT,
            temperature=settings.LLM_TEMPERATURE,
            max_retries=0,  # 재시도 없이 한 번만 호출
        )
    elif settings.OPENAI_API_KEY:
        _llm = ChatOpenAI(
            model=settings.OPENAI_MODEL,
            api_key=settings.OPENAI_API_KEY,
            temperature=settings.LLM_TEMPERATURE,
            max_retries=0,
        )
    else:
        logger.warning("No OPENAI_API_KEY / AZURE_OPENAI_API_KEY configured")
        return None
    return _llm


# 단계별 흐름에서 예약 의도가 없을 때 쓰는 자유 대화 프롬프트
CHAT_PROMPT = ChatPromptTemplate.from_messages(
    [
        (
            "system",
            "You are {venue} AI, a polite, friendly banquet-booking assistant. "
            "You can help guests book a banquet or answer general questions about the restaurant. "
            "Ask one question at a time. If the guest wants to book, tell them to say "
            "'I want to book a banquet'.",
        ),
        MessagesPlaceholder("history"),
    ]
)

# 추출 모드에서 대화를 이끄는 호스트 프롬프트
HOST_PROMPT = ChatPromptTemplate.from_messages(
    [
        (
            "system",
            "You are {venue}'s banquet assistant.\n"
            "Be friendly, warm, and conversational, like a real Italian restaurant host.\n"
            "Ask for booking details naturally, one or two questions at a time:\n"
            "- What type of event? (wedding, birthday, corporate, etc.)\n"
            "- What date?\n"
            "- What time?\n"
            "- How many guests?\n"
            "- Any food preferences or menu requests?\n"
            "- Email address for confirmation\n"
            "- Phone number\n\n"
            "Once you have ALL the details, say something like "
            '"Perfect! Let me confirm your booking..." and summarize everything.\n'
            "Keep your tone natural, warm, and human. Use Italian expressions occasionally "
            'like "Perfetto!" or "Magnifico!"',
        ),
        MessagesPlaceholder("history"),
    ]
)

EXTRACTION_PROMPT = ChatPromptTemplate.from_messages(
    [
        (
            "system",
            "You extract booking details from conversations. Return ONLY valid JSON, no other text.",
        ),
        (
            "human",
            "Extract booking information from this conversation:\n\n"
            "{conversation}\n\n"
            "Return JSON in this exact format:\n"
            "{{\n"
            '  "date": "2025-11-01",\n'
            '  "startTime": "2:00 PM",\n'
            '  "endTime": "5:00 PM",\n'
            '  "partySize": 25,\n'
            '  "eventType": "Graduation Party",\n'
            '  "food": "pasta and pizza",\n'
            '  "email": "guest@example.com",\n'
            '  "phone": "330-555-0100",\n'
            '  "decor": null,\n'
            '  "notes": ""\n'
            "}}\n\n"
            "Rules:\n"
            "- date must be YYYY-MM-DD format (today is {today})\n"
            "- times in 12-hour format with AM/PM\n"
            "- partySize as a number\n"
            "- Use null for any missing fields\n"
            "- Return ONLY the JSON object\n\n"
            "Extract the data now:",
        ),
    ]
)


def to_langchain_messages(history: Sequence[Message]) -> List[BaseMessage]:
    """세션 기록을 LangChain 메시지 형식으로 변환"""
    converted: List[BaseMessage] = []
    for message in history:
        if message.role == "user":
            converted.append(HumanMessage(content=message.text))
        elif message.role == "assistant":
            converted.append(AIMessage(content=message.text))
        else:
            converted.append(SystemMessage(content=message.text))
    return converted


def _require_llm():
    llm = get_llm()
    if llm is None:
        raise LLMUnavailableError("Language model is not configured")
    return llm


async def astream_reply(
    prompt: ChatPromptTemplate, history: Sequence[Message]
) -> AsyncIterator[str]:
    """대화 기록을 넣고 모델 응답을 토큰 단위로 흘려보낸다."""
    llm = _require_llm()
    messages = prompt.format_messages(
        venue=settings.VENUE_NAME, history=to_langchain_messages(history)
    )
    async for chunk in llm.astream(messages):
        content = chunk.content
        if content:
            yield content


async def ainvoke_extraction(conversation: str, today: str) -> str:
    """추출 프롬프트를 한 번 호출하고 원문 응답을 돌려준다 (재시도 없음)."""
    llm = _require_llm()
    messages = EXTRACTION_PROMPT.format_messages(conversation=conversation, today=today)
    response = await llm.ainvoke(messages)
    return (response.content or "").strip()
