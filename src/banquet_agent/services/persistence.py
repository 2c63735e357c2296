import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from banquet_agent.core.config import settings
from banquet_agent.core.timeparse import event_span
from banquet_agent.schemas.sessions import BookingRecord
from banquet_agent.services import google_auth
from banquet_agent.services.step_machine import EMAIL_RE

logger = logging.getLogger(__name__)


@dataclass
class PersistenceResult:
    calendar_ok: bool = False
    sheet_ok: bool = False
    skipped: bool = False
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def saved(self) -> bool:
        """두 저장소 중 하나라도 성공했는지"""
        return self.calendar_ok or self.sheet_ok


class BookingPersistence:
    """완성된 예약을 Google Calendar 이벤트 1건 + Google Sheets 행 1줄로 저장한다.

    두 쓰기는 서로 독립적이다. 한쪽이 실패해도 다른 쪽은 계속 진행하고,
    실패는 로그로만 남긴다. 재시도는 없다.
    """

    def __init__(
        self,
        calendar_factory: Optional[Callable[[], Any]] = None,
        sheets_factory: Optional[Callable[[], Any]] = None,
        calendar_id: Optional[str] = None,
        sheet_id: Optional[str] = None,
        sheet_range: Optional[str] = None,
        timezone: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._calendar_factory = calendar_factory or google_auth.calendar_service
        self._sheets_factory = sheets_factory or google_auth.sheets_service
        self.calendar_id = calendar_id or settings.CALENDAR_ID
        self.sheet_id = sheet_id if sheet_id is not None else settings.SHEET_ID
        self.sheet_range = sheet_range or settings.SHEET_RANGE
        self.timezone = timezone or settings.TIMEZONE
        self.timeout = timeout if timeout is not None else settings.PERSISTENCE_TIMEOUT_SECONDS

    def build_calendar_event(self, booking: BookingRecord) -> Dict[str, Any]:
        start_at, end_at = event_span(booking.date, booking.start_time, booking.end_time)
        event: Dict[str, Any] = {
            "summary": f"Banquet: {booking.event_type or 'Event'} - {booking.party_size} guests",
            "description": "\n".join(
                [
                    f"Customer: {booking.email}",
                    f"Phone: {booking.phone or 'N/A'}",
                    f"Guests: {booking.party_size}",
                    f"Food: {booking.food or 'Not specified'}",
                    f"Decor: {booking.decor or 'None'}",
                    f"Notes: {booking.extras or 'None'}",
                ]
            ),
            "start": {"dateTime": start_at.isoformat(), "timeZone": self.timezone},
            "end": {"dateTime": end_at.isoformat(), "timeZone": self.timezone},
        }
        if booking.email and EMAIL_RE.fullmatch(booking.email):
            event["attendees"] = [{"email": booking.email}]
        return event

    def build_sheet_row(
        self, booking: BookingRecord, created_at: Optional[datetime] = None
    ) -> List[Any]:
        """시트 열 순서: 접수 시각, 날짜, 시작, 종료, 행사 종류, 인원, 음식, 이메일, 전화, 장식, 기타"""
        return [
            (created_at or datetime.utcnow()).isoformat(),
            booking.date,
            booking.start_time,
            booking.end_time or "N/A",
            booking.event_type,
            booking.party_size,
            booking.food or "N/A",
            booking.email,
            booking.phone or "N/A",
            booking.decor or "None",
            booking.extras or "None",
        ]

    def insert_calendar_event(self, booking: BookingRecord) -> Optional[str]:
        event = self.build_calendar_event(booking)
        logger.info("Creating calendar event: %s", event["summary"])
        created = (
            self._calendar_factory()
            .events()
            .insert(calendarId=self.calendar_id, body=event)
            .execute()
        )
        link = (created or {}).get("htmlLink")
        logger.info("Calendar event created: %s", link)
        return link

    def append_sheet_row(self, booking: BookingRecord) -> None:
        if not self.sheet_id:
            raise RuntimeError("SHEET_ID is not configured")
        self._sheets_factory().spreadsheets().values().append(
            spreadsheetId=self.sheet_id,
            range=self.sheet_range,
            valueInputOption="RAW",
            body={"values": [self.build_sheet_row(booking)]},
        ).execute()
        logger.info("Booking row appended to sheet %s", self.sheet_id)

    async def _run(self, name: str, func: Callable[[BookingRecord], Any], booking: BookingRecord) -> Optional[str]:
        """쓰기 하나를 스레드에서 실행. 실패하면 오류 메시지를, 성공하면 None."""
        try:
            await asyncio.wait_for(asyncio.to_thread(func, booking), timeout=self.timeout)
            return None
        except asyncio.TimeoutError:
            logger.error("%s write timed out after %ss", name, self.timeout)
            return "timed out"
        except Exception as e:
            logger.error("%s write failed: %s", name, e)
            return str(e) or e.__class__.__name__

    async def save(self, booking: BookingRecord) -> PersistenceResult:
        missing = booking.get_missing_fields()
        if missing:
            logger.warning("Refusing to persist incomplete booking, missing: %s", ", ".join(missing))
            return PersistenceResult(skipped=True)

        calendar_error, sheet_error = await asyncio.gather(
            self._run("calendar", self.insert_calendar_event, booking),
            self._run("sheet", self.append_sheet_row, booking),
        )

        result = PersistenceResult(calendar_ok=calendar_error is None, sheet_ok=sheet_error is None)
        if calendar_error:
            result.errors["calendar"] = calendar_error
        if sheet_error:
            result.errors["sheet"] = sheet_error
        if result.saved:
            logger.info("Booking saved (calendar=%s, sheet=%s)", result.calendar_ok, result.sheet_ok)
        return result
