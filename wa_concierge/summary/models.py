"""
Summary bookkeeping stored under ``summary:meta:{phone}``.
"""
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..core.errors import MalformedRecordError


@dataclass
class SummaryMeta:
    customer_name: str
    last_user_message_at: int
    summary_sent: bool = False

    def to_json(self) -> str:
        return json.dumps(
            {
                "customerName": self.customer_name,
                "lastUserMessageAt": self.last_user_message_at,
                "summarySent": self.summary_sent,
            },
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, raw: str) -> "SummaryMeta":
        try:
            data = json.loads(raw)
            return cls(
                customer_name=str(data.get("customerName") or ""),
                last_user_message_at=int(data["lastUserMessageAt"]),
                summary_sent=bool(data.get("summarySent", False)),
            )
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            raise MalformedRecordError(f"Invalid summary meta: {e}") from e


def build_payload(
    phone: str, customer_name: str, summary: str, sent_at: Optional[datetime] = None
) -> Dict[str, Any]:
    """Body POSTed to the summary webhook."""
    sent_at = sent_at or datetime.now(timezone.utc)
    return {
        "customerName": customer_name,
        "phone": phone,
        "timestamp": sent_at.isoformat(),
        "summary": summary,
    }
