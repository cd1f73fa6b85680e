from .models import Meeting, ReminderFlags
from .scheduler import ReminderScheduler
from .storage import MeetingStore, meeting_key

__all__ = ["Meeting", "MeetingStore", "ReminderFlags", "ReminderScheduler", "meeting_key"]
