#!/usr/bin/env python3
"""
연회 예약 어시스턴트 시연 스크립트

실행 중인 API 서버에 단계별 예약 시나리오를 보내고 SSE 응답을 출력합니다.
"""

import json
import os
import time

import requests

from banquet_agent.client import collect_reply

# API 기본 URL
BASE_URL = os.getenv("BANQUET_API_URL", "http://localhost:8000")

SCENARIO = [
    ("예약 시작", "Hi! I'd like to book a birthday party"),
    ("날짜", "November 1st"),
    ("시간", "6pm-9pm"),
    ("인원", "about 40 people"),
    ("행사 종류", "Birthday Party"),
    ("음식", "pasta and pizza, family style"),
    ("이메일", "jane@example.com"),
    ("전화번호", "330-555-0100"),
    ("장식", "red and gold balloons"),
    ("마감", "No, that's it"),
]


def print_separator(title: str):
    """구분선 출력"""
    print("\n" + "=" * 60)
    print(f" {title}")
    print("=" * 60)


def show_json(response: requests.Response, title: str):
    print(f"\n{title} (상태 코드: {response.status_code})")
    try:
        print(json.dumps(response.json(), ensure_ascii=False, indent=2))
    except ValueError:
        print(response.text)


def send(message: str, session_id: str | None):
    payload = {"message": message}
    if session_id:
        payload["sessionId"] = session_id
    with requests.post(f"{BASE_URL}/api/assistant", json=payload, stream=True, timeout=120) as response:
        response.raise_for_status()
        return collect_reply(response.iter_lines(decode_unicode=True))


def run_health_check():
    print_separator("1. 서비스 헬스체크")
    show_json(requests.get(f"{BASE_URL}/healthz", timeout=10), "기본 헬스체크")
    show_json(requests.get(f"{BASE_URL}/readyz", timeout=10), "레디니스 체크")
    show_json(requests.get(f"{BASE_URL}/api/health", timeout=10), "API 헬스체크")


def run_booking_scenario() -> str | None:
    print_separator("2. 연회 예약 시나리오")
    session_id = None
    for step, message in SCENARIO:
        print(f"\n📝 {step}")
        print(f"사용자: {message}")
        reply = send(message, session_id)
        session_id = reply.session_id or session_id
        print(f"🤖 AI: {reply.text}")
        if reply.booking_saved:
            print("✅ 예약이 Calendar / Sheets 에 저장되었습니다.")
        time.sleep(0.5)  # 요청 간 간격
    return session_id


def run_session_status(session_id: str | None):
    if not session_id:
        return
    print_separator("3. 세션 상태 조회")
    show_json(requests.get(f"{BASE_URL}/api/sessions/{session_id}", timeout=10), "세션 상태")


def main():
    """메인 실행 함수"""
    print("🍝 연회 예약 AI 어시스턴트 시연 시작")
    print(f"📍 API 서버: {BASE_URL}")

    try:
        run_health_check()
        session_id = run_booking_scenario()
        run_session_status(session_id)
        print_separator("✅ 시연 완료")
    except requests.exceptions.ConnectionError:
        print("❌ 서버에 연결할 수 없습니다.")
        print(f"   서버가 {BASE_URL}에서 실행 중인지 확인해주세요.")


if __name__ == "__main__":
    main()
