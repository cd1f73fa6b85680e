"""
Calendar Routes
Meeting intake from the booking automation, plus operator endpoints.
"""
import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Body, Depends
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..calendar.messages import (
    build_before_reminder,
    build_confirmation,
    build_day_reminder,
    build_history_note,
)
from ..calendar.models import Meeting
from ..core.dependencies import Services, get_services
from ..core.errors import StoreUnavailableError
from ..core.logger import mask_phone
from ..core.models import ChatMessage, now_ms
from ..core.phone import to_international
from ..models.meeting import IncomingMeeting, MeetingResponse

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_MEETING_NAME = "Customer"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "message": message})


def _phone(raw: str, services: Services) -> str:
    return to_international(raw, services.config.DEFAULT_COUNTRY_CODE)


async def announce_meeting(meeting: Meeting, services: Services):
    """Note the meeting in the chat history and confirm it to the customer."""
    try:
        await services.store.add_note(meeting.phone, build_history_note(meeting))

        text = build_confirmation(meeting)
        if await services.sender.send_text(meeting.phone, text):
            await services.store.append(
                meeting.phone, ChatMessage(role="assistant", content=text, timestamp=now_ms())
            )
            logger.info("MEETING|confirmation_sent|phone=%s", mask_phone(meeting.phone))
        else:
            logger.error("MEETING|confirmation_failed|phone=%s", mask_phone(meeting.phone))
    except Exception:
        logger.error("MEETING|announce_failed|phone=%s", mask_phone(meeting.phone), exc_info=True)


@router.post("/meeting", response_model=MeetingResponse)
async def create_meeting(
    background_tasks: BackgroundTasks,
    body: Any = Body(None),
    services: Services = Depends(get_services),
):
    """Accepts one meeting object or a list (the first element is used)."""
    try:
        items = body if isinstance(body, list) else [body]
        if not items or items[0] is None:
            return _error(400, "No meeting data provided")

        try:
            incoming = IncomingMeeting.model_validate(items[0])
        except ValidationError as e:
            logger.warning("MEETING|invalid|errors=%d", e.error_count())
            return _error(400, f"Invalid meeting data: {e.errors()[0].get('msg', 'invalid')}")

        meeting = Meeting(
            phone=_phone(incoming.customer_phone, services),
            name=(incoming.customer_name or "").strip() or DEFAULT_MEETING_NAME,
            date=incoming.meeting_date,
            time=incoming.meeting_time,
            created_at=now_ms(),
        )

        if not await services.meetings.save(meeting):
            return _error(500, "Failed to save meeting")

        background_tasks.add_task(announce_meeting, meeting, services)
        return {"status": "ok", "message": "Meeting saved successfully", "data": meeting.to_dict()}

    except Exception:
        logger.error("MEETING|intake_failed", exc_info=True)
        return _error(500, "Internal server error")


@router.get("/meeting/{phone}", response_model=MeetingResponse)
async def get_meeting(phone: str, services: Services = Depends(get_services)):
    try:
        meeting = await services.meetings.get(_phone(phone, services))
    except ValueError:
        return _error(400, "Invalid phone number")

    if meeting is None:
        return _error(404, "No meeting found for this phone number")
    return {"status": "ok", "message": "Meeting found", "data": meeting.to_dict()}


@router.delete("/meeting/{phone}")
async def delete_meeting(phone: str, services: Services = Depends(get_services)):
    try:
        normalized = _phone(phone, services)
    except ValueError:
        return _error(400, "Invalid phone number")

    if not await services.meetings.delete(normalized):
        return _error(500, "Failed to delete meeting")
    return {"status": "ok", "message": "Meeting deleted"}


@router.get("/meetings")
async def list_meetings(services: Services = Depends(get_services)):
    try:
        meetings = await services.meetings.list_all()
    except StoreUnavailableError as e:
        logger.error("MEETING|list_failed|error=%s", e)
        return _error(503, "Meeting store unavailable")

    data = [{"key": key, **meeting.to_dict()} for key, meeting in meetings]
    return {"status": "ok", "count": len(data), "data": data}


async def _send_test_reminder(phone: str, services: Services, kind: str):
    try:
        normalized = _phone(phone, services)
    except ValueError:
        return _error(400, "Invalid phone number")

    meeting = await services.meetings.get(normalized)
    if meeting is None:
        return _error(404, "No meeting found for this phone number")

    if kind == "day":
        text = build_day_reminder(meeting)
    else:
        text = build_before_reminder(meeting, services.config.REMINDER_MINUTES_BEFORE)

    # Flags are left untouched
    sent = await services.sender.send_text(normalized, text)
    logger.info("REMINDER|test_sent|phone=%s|kind=%s|sent=%s", mask_phone(normalized), kind, sent)
    if not sent:
        return _error(502, "Failed to send reminder")
    return {"status": "ok", "message": f"Test {kind} reminder sent", "data": {"text": text}}


@router.post("/test/day-reminder/{phone}")
async def test_day_reminder(phone: str, services: Services = Depends(get_services)):
    return await _send_test_reminder(phone, services, "day")


@router.post("/test/before-reminder/{phone}")
async def test_before_reminder(phone: str, services: Services = Depends(get_services)):
    return await _send_test_reminder(phone, services, "before")
