"""
Opt-Out System - Type Definitions
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

from ..errors import MalformedRecordError

Confidence = Literal["high", "medium", "low"]
CONFIDENCE_LEVELS = ("high", "medium", "low")


@dataclass
class OptOutStatus:
    """Stored while a customer is unsubscribed; absence means subscribed"""
    phone: str
    timestamp: int
    reason: Optional[str] = None
    unsubscribed: bool = True

    def to_json(self) -> str:
        return json.dumps(
            {
                "phone": self.phone,
                "unsubscribed": self.unsubscribed,
                "timestamp": self.timestamp,
                "reason": self.reason,
            },
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, raw: str) -> "OptOutStatus":
        try:
            data: Dict[str, Any] = json.loads(raw)
            return cls(
                phone=str(data.get("phone", "")),
                timestamp=int(data.get("timestamp", 0)),
                reason=data.get("reason"),
                unsubscribed=bool(data.get("unsubscribed", True)),
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise MalformedRecordError(f"Invalid opt-out status: {e}") from e


@dataclass
class OptOutDetection:
    """Classifier verdict for one message"""
    is_opt_out: bool
    confidence: Confidence = "high"
    detected_phrase: Optional[str] = None

    @property
    def actionable(self) -> bool:
        """Low confidence never changes state."""
        return self.is_opt_out and self.confidence != "low"
