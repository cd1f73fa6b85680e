"""
Conversation summary generation for the sales team.
"""
import logging
from typing import List, Optional

from ..core.config import FALLBACK_SUMMARY_PROMPT, settings
from ..core.history import ConversationStore
from ..core.llm import OpenAIClient
from ..core.logger import mask_phone
from ..core.models import ChatMessage

logger = logging.getLogger(__name__)

SUMMARIZER_ROLE = "You summarize customer conversations concisely and professionally."
ASSISTANT_LABEL = "Assistant"
NOTE_LABEL = "Note"
DEFAULT_CUSTOMER_LABEL = "Customer"


def format_transcript(history: List[ChatMessage], customer_name: str) -> str:
    labels = {
        "user": customer_name or DEFAULT_CUSTOMER_LABEL,
        "assistant": ASSISTANT_LABEL,
        "system": NOTE_LABEL,
    }
    return "\n".join(f"{labels.get(m.role, ASSISTANT_LABEL)}: {m.content}" for m in history)


class SummaryGenerator:
    def __init__(
        self,
        store: ConversationStore,
        llm: OpenAIClient,
        prompt: str = FALLBACK_SUMMARY_PROMPT,
        min_user_messages: Optional[int] = None,
    ):
        self.store = store
        self.llm = llm
        self.prompt = prompt
        self.min_user_messages = settings.SUMMARY_MIN_MESSAGES if min_user_messages is None else min_user_messages

    async def generate(self, phone: str, customer_name: str) -> Optional[str]:
        """
        Summarize the stored conversation.

        Returns:
            Summary text, or None when the history is too short or the AI has no answer
        """
        history = await self.store.read(phone)
        user_messages = sum(1 for m in history if m.role == "user")
        if user_messages < self.min_user_messages:
            logger.debug(
                "SUMMARY|skipped|phone=%s|user_messages=%d|min=%d",
                mask_phone(phone), user_messages, self.min_user_messages,
            )
            return None

        content = (
            f"{self.prompt}\n\n"
            f"Customer name: {customer_name or DEFAULT_CUSTOMER_LABEL}\n\n"
            f"Conversation:\n{format_transcript(history, customer_name)}"
        )
        summary = await self.llm.complete(
            [
                {"role": "system", "content": SUMMARIZER_ROLE},
                {"role": "user", "content": content},
            ]
        )
        if summary is None:
            logger.error("SUMMARY|ai_no_response|phone=%s", mask_phone(phone))
            return None
        return summary.strip() or None
