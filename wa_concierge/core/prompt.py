"""
Build prompt messages for the completion service:
system prompt with local date/time, stored history, then the current batch
prefixed with what we know about the customer.
"""
import logging
from datetime import datetime
from typing import List, Optional

import pytz

from .history import ConversationStore
from .llm import ChatMessages, OpenAIClient
from .models import (
    GENDER_FEMALE,
    GENDER_MALE,
    GENDER_UNKNOWN,
    ChatMessage,
    CustomerProfile,
    InboundMessage,
)

logger = logging.getLogger(__name__)

NAME_PROMPT = (
    "You receive a WhatsApp display name. Reply with the first name to address the "
    "customer by, and their likely gender, in the format: name|gender. "
    "gender must be one of: male, female, unknown."
)

MEDIA_LABELS = {
    "image": "Image",
    "video": "Video",
    "audio": "Voice message",
    "document": "Document",
    "sticker": "Sticker",
}


def current_datetime_context(tz_name: str, now: Optional[datetime] = None) -> str:
    tz = pytz.timezone(tz_name)
    local = (now or datetime.now(pytz.utc)).astimezone(tz)
    return (
        f"Today is {local.strftime('%A')}, {local.day}.{local.month}.{local.year}, "
        f"the time is {local.strftime('%H:%M')} ({tz_name})"
    )


def extract_first_name(full_name: Optional[str]) -> Optional[str]:
    if not full_name or not full_name.strip():
        return None
    return full_name.strip().split()[0]


def normalize_gender(value: Optional[str]) -> str:
    value = (value or "").strip().lower()
    if value in (GENDER_MALE, GENDER_FEMALE):
        return value
    return GENDER_UNKNOWN


def format_single_message(msg: InboundMessage) -> str:
    content = msg.text or ""
    if msg.media_url:
        label = MEDIA_LABELS.get(msg.message_type, "Media")
        content += f"\n\n[{label}: {msg.media_url}]"
    return content.strip()


def format_batch(batch: List[InboundMessage], profile: Optional[CustomerProfile]) -> str:
    name_prefix = ""
    if profile and profile.name:
        gender = f" ({profile.gender})" if profile.gender != GENDER_UNKNOWN else ""
        name_prefix = f'[Customer name: "{profile.name}"{gender}]\n\n'

    if len(batch) == 1:
        return name_prefix + format_single_message(batch[0])

    combined = "\n\n".join(
        f"Message {i}:\n{format_single_message(msg)}" for i, msg in enumerate(batch, start=1)
    )
    return f"{name_prefix}The customer sent several messages in a row:\n\n{combined}"


def format_for_history(msg: InboundMessage) -> str:
    """Stored user content: the resolved text, or a media reference when there is none."""
    if msg.text and msg.text.strip():
        return msg.text.strip()
    if msg.media_url:
        return f"[Media: {msg.media_url}]"
    return ""


class PromptBuilder:
    """Assembles the reply prompt and creates the customer profile on first contact."""

    def __init__(self, system_prompt: str, llm: OpenAIClient, store: ConversationStore, timezone: str):
        self.system_prompt = system_prompt
        self.llm = llm
        self.store = store
        self.timezone = timezone

    async def build(
        self, phone: str, history: List[ChatMessage], batch: List[InboundMessage]
    ) -> ChatMessages:
        messages: ChatMessages = [
            {
                "role": "system",
                "content": f"[{current_datetime_context(self.timezone)}]\n\n{self.system_prompt}",
            }
        ]

        for msg in history:
            messages.append(
                {"role": "user" if msg.role == "user" else "assistant", "content": msg.content}
            )

        profile = await self.get_or_create_profile(phone, history, batch)
        messages.append({"role": "user", "content": format_batch(batch, profile)})
        return messages

    async def get_or_create_profile(
        self, phone: str, history: List[ChatMessage], batch: List[InboundMessage]
    ) -> Optional[CustomerProfile]:
        existing = await self.store.read_profile(phone)
        if existing:
            return existing

        # Only the very first turn creates the profile
        if history or not batch:
            return None

        first_name = extract_first_name(batch[0].sender_name)
        if not first_name:
            return None

        profile = await self.detect_name_and_gender(first_name)
        await self.store.save_profile(phone, profile)
        return profile

    async def detect_name_and_gender(self, name: str) -> CustomerProfile:
        answer = await self.llm.complete(
            [{"role": "system", "content": NAME_PROMPT}, {"role": "user", "content": name}],
            temperature=0,
            max_tokens=30,
        )
        if not answer:
            return CustomerProfile(name=name, gender=GENDER_UNKNOWN)

        parts = answer.strip().split("|")
        detected_name = parts[0].strip() or name
        gender = normalize_gender(parts[1] if len(parts) > 1 else None)
        return CustomerProfile(name=detected_name, gender=gender)
