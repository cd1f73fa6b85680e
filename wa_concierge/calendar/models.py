"""
Meeting contracts stored under ``meeting:{phone}``.
"""
import json
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Dict

from ..core.errors import MalformedRecordError

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"


@dataclass
class ReminderFlags:
    """Monotonic: flags only ever go from False to True"""
    sent_day_reminder: bool = False
    sent_before_reminder: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            "sentDayReminder": self.sent_day_reminder,
            "sentBeforeReminder": self.sent_before_reminder,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ReminderFlags":
        if not isinstance(data, dict):
            return cls()
        return cls(
            sent_day_reminder=bool(data.get("sentDayReminder", False)),
            sent_before_reminder=bool(data.get("sentBeforeReminder", False)),
        )


@dataclass
class Meeting:
    """A scheduled consultation and its reminder flags"""
    phone: str
    name: str
    date: str
    time: str
    created_at: int = 0
    flags: ReminderFlags = field(default_factory=ReminderFlags)

    @property
    def day(self) -> date:
        return datetime.strptime(self.date, DATE_FORMAT).date()

    @property
    def time_of_day(self) -> time:
        return datetime.strptime(self.time, TIME_FORMAT).time()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phone": self.phone,
            "name": self.name,
            "date": self.date,
            "time": self.time,
            "createdAt": self.created_at,
            "flags": self.flags.to_dict(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> "Meeting":
        """
        Raises:
            MalformedRecordError: on bad JSON, missing fields or unparseable date/time
        """
        try:
            data = json.loads(raw)
            return cls(
                phone=str(data["phone"]),
                name=str(data.get("name", "")),
                date=datetime.strptime(str(data["date"]), DATE_FORMAT).strftime(DATE_FORMAT),
                time=datetime.strptime(str(data["time"]), TIME_FORMAT).strftime(TIME_FORMAT),
                created_at=int(data.get("createdAt", 0)),
                flags=ReminderFlags.from_dict(data.get("flags")),
            )
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            raise MalformedRecordError(f"Invalid meeting record: {e}") from e
