#!/usr/bin/env python3
"""
연회 예약 어시스턴트 터미널 클라이언트

POST /api/assistant 의 SSE 스트림을 읽어 텍스트는 바로 출력하고,
세션 ID 는 다음 요청에 다시 보낸다.
"""

import argparse
import os
import sys
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

import httpx

from banquet_agent.schemas.events import BookingSaved, Done, SessionAssigned, TextChunk, decode_lines

DEFAULT_BASE_URL = os.getenv("BANQUET_API_URL", "http://localhost:8000")


@dataclass
class ChatReply:
    session_id: Optional[str] = None
    text: str = ""
    booking_saved: bool = False
    done: bool = False


def collect_reply(lines: Iterable[str], on_text: Optional[Callable[[str], None]] = None) -> ChatReply:
    """SSE 줄들을 하나의 응답으로 모은다. on_text 는 텍스트 조각마다 호출된다."""
    reply = ChatReply()
    for event in decode_lines(lines):
        if isinstance(event, SessionAssigned):
            reply.session_id = event.session_id
        elif isinstance(event, TextChunk):
            reply.text += event.text
            if on_text:
                on_text(event.text)
        elif isinstance(event, BookingSaved):
            reply.booking_saved = True
        elif isinstance(event, Done):
            reply.done = True
            break
    return reply


class ChatClient:
    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = 120.0, http: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.session_id: Optional[str] = None
        self._http = http or httpx.Client(base_url=self.base_url, timeout=timeout)

    def send(self, message: str, on_text: Optional[Callable[[str], None]] = None) -> ChatReply:
        payload = {"message": message}
        if self.session_id:
            payload["sessionId"] = self.session_id

        with self._http.stream("POST", "/api/assistant", json=payload) as response:
            response.raise_for_status()
            reply = collect_reply(response.iter_lines(), on_text)

        if reply.session_id:
            self.session_id = reply.session_id
        return reply

    def close(self) -> None:
        self._http.close()


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Banquet booking assistant chat client")
    parser.add_argument("--url", default=DEFAULT_BASE_URL, help="API base URL")
    parser.add_argument("--session", default=None, help="resume an existing session id")
    args = parser.parse_args(argv)

    client = ChatClient(args.url)
    client.session_id = args.session
    print("Hi! I'm your banquet booking assistant. Type 'exit' to quit.")

    try:
        while True:
            try:
                message = input("\nYou: ").strip()
            except (EOFError, KeyboardInterrupt):
                print()
                break
            if message.lower() in ("exit", "quit"):
                break
            if not message:
                continue

            print("Assistant: ", end="", flush=True)
            try:
                reply = client.send(message, on_text=lambda t: print(t, end="", flush=True))
            except httpx.HTTPError as e:
                print(f"\n[error] {e}", file=sys.stderr)
                continue
            print()
            if reply.booking_saved:
                print("[booking saved]")
    finally:
        client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
