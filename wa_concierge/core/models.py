"""
Conversation Contracts - Data structures shared by the inbound pipeline,
the conversation store and the reply flow.
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional

from .errors import MalformedRecordError

Role = Literal["user", "assistant", "system"]
VALID_ROLES = ("user", "assistant", "system")


def now_ms() -> int:
    """Get current timestamp in milliseconds"""
    return int(time.time() * 1000)


# ========== HISTORY CONTRACTS ==========

@dataclass
class ChatMessage:
    """One stored dialogue entry"""
    role: Role
    content: str
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        if not isinstance(data, dict) or data.get("role") not in VALID_ROLES:
            raise MalformedRecordError(f"Invalid chat message: {data!r}")
        try:
            timestamp = int(data.get("timestamp", 0))
        except (TypeError, ValueError) as e:
            raise MalformedRecordError(f"Invalid chat message timestamp: {e}") from e
        return cls(role=data["role"], content=str(data.get("content", "")), timestamp=timestamp)


def dump_history(messages: List[ChatMessage]) -> str:
    return json.dumps([m.to_dict() for m in messages], ensure_ascii=False)


def load_history(raw: str) -> List[ChatMessage]:
    """
    Raises:
        MalformedRecordError: if the payload is not a list of messages
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedRecordError(f"History is not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise MalformedRecordError("History is not a list")
    return [ChatMessage.from_dict(item) for item in data]


# ========== CUSTOMER CONTRACTS ==========

GENDER_MALE = "male"
GENDER_FEMALE = "female"
GENDER_UNKNOWN = "unknown"


@dataclass
class CustomerProfile:
    """Display name and gender tag, written once per customer"""
    name: str
    gender: str = GENDER_UNKNOWN
    saved_at: int = 0

    def to_json(self) -> str:
        return json.dumps(
            {"name": self.name, "gender": self.gender, "savedAt": self.saved_at},
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, raw: str) -> "CustomerProfile":
        try:
            data = json.loads(raw)
            return cls(
                name=data["name"],
                gender=data.get("gender") or GENDER_UNKNOWN,
                saved_at=int(data.get("savedAt", 0)),
            )
        except (TypeError, ValueError, KeyError) as e:
            raise MalformedRecordError(f"Invalid customer profile: {e}") from e


# ========== INBOUND CONTRACTS ==========

@dataclass
class InboundMessage:
    """Normalized inbound message, fully resolved to text before batching"""
    phone: str
    text: str
    message_id: str = ""
    sender_name: Optional[str] = None
    message_type: str = "text"
    media_url: Optional[str] = None
    timestamp: int = 0

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = now_ms()

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())
