"""
Meeting intake models for the calendar API
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from ..calendar.models import DATE_FORMAT, TIME_FORMAT


class IncomingMeeting(BaseModel):
    """Meeting as posted by the booking automation"""
    customer_name: Optional[str] = None
    customer_phone: str = Field(..., description="Local or international phone number")
    meeting_date: str = Field(..., description="Date in YYYY-MM-DD format")
    meeting_time: str = Field(..., description="Time in HH:MM format")

    @field_validator("customer_phone")
    @classmethod
    def phone_has_digits(cls, value: str) -> str:
        if not any(ch.isdigit() for ch in value or ""):
            raise ValueError("customer_phone must contain digits")
        return value

    @field_validator("meeting_date")
    @classmethod
    def valid_date(cls, value: str) -> str:
        # Zero-padded on the way in: "2025-12-3" -> "2025-12-03"
        return datetime.strptime(value, DATE_FORMAT).strftime(DATE_FORMAT)

    @field_validator("meeting_time")
    @classmethod
    def valid_time(cls, value: str) -> str:
        return datetime.strptime(value, TIME_FORMAT).strftime(TIME_FORMAT)


class MeetingResponse(BaseModel):
    status: str
    message: str
    data: Optional[Dict[str, Any]] = None
