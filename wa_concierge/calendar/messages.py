"""
Customer-facing texts for meeting confirmation and reminders.
"""
from ..core.prompt import extract_first_name
from .models import Meeting
from .time_utils import parse_date

DEFAULT_CUSTOMER_NAME = "there"


def format_time(value: str) -> str:
    """Drop the leading hour zero: "09:30" -> "9:30"."""
    hour, minute = value.split(":")
    return f"{int(hour)}:{minute}"


def format_meeting_datetime(day: str, time_of_day: str) -> str:
    parsed = parse_date(day)
    return f"{parsed.strftime('%A')}, {parsed.day}.{parsed.month} at {format_time(time_of_day)}"


def _first_name(meeting: Meeting) -> str:
    return extract_first_name(meeting.name) or DEFAULT_CUSTOMER_NAME


def build_day_reminder(meeting: Meeting) -> str:
    return (
        f"{_first_name(meeting)}, a reminder about the consultation call you booked "
        f"for today at {format_time(meeting.time)}. We look forward to talking with you."
    )


def build_before_reminder(meeting: Meeting, minutes_before: int) -> str:
    return (
        f"{_first_name(meeting)}, in {minutes_before} minutes (at {format_time(meeting.time)}) "
        f"we will call you for your consultation. Please stay available."
    )


def build_confirmation(meeting: Meeting) -> str:
    when = format_meeting_datetime(meeting.date, meeting.time)
    return (
        f"{_first_name(meeting)}, your meeting is booked. "
        f"Please be available on {when}, our advisor will call you."
    )


def build_history_note(meeting: Meeting) -> str:
    """System note appended to the chat so later replies know about the meeting."""
    when = format_meeting_datetime(meeting.date, meeting.time)
    return f"{_first_name(meeting)} booked a consultation meeting for {when}"
