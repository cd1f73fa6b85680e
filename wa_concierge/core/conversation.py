"""
Conversation flow: inbound message -> consent check -> batching -> reply turn.
"""
import logging
from typing import Awaitable, Callable, List, Optional

from ..summary.tracker import SummaryTracker
from .buffer import MessageBuffer
from .delivery import WhatsAppSender
from .history import ConversationStore
from .llm import OpenAIClient
from .logger import mask_phone
from .models import ChatMessage, InboundMessage, now_ms
from .optout import OptOutStateMachine
from .prompt import PromptBuilder, format_for_history

logger = logging.getLogger(__name__)

AI_FAILURE_TEXT = "Sorry, I ran into a temporary technical issue. Please try again in a moment."
MEDIA_FAILURE_TEXT = (
    "Sorry, I couldn't read that attachment. Please try sending it again or describe it in text."
)

# Resolves a media message to text (transcription, image description); None on failure
MediaResolver = Callable[[InboundMessage], Awaitable[Optional[str]]]

OUTCOME_OPTED_OUT = "opted_out"
OUTCOME_BUFFERED = "buffered"
OUTCOME_MEDIA_FAILED = "media_failed"


class ConversationService:
    """Batch consumer: one reply turn per flushed batch."""

    def __init__(
        self,
        store: ConversationStore,
        prompt_builder: PromptBuilder,
        llm: OpenAIClient,
        sender: WhatsAppSender,
        fallback_text: str = AI_FAILURE_TEXT,
    ):
        self.store = store
        self.prompt_builder = prompt_builder
        self.llm = llm
        self.sender = sender
        self.fallback_text = fallback_text

    async def flush(self, phone: str, batch: List[InboundMessage]):
        try:
            reply = await self._run_turn(phone, batch)
        except Exception:
            logger.error("TURN|failed|phone=%s", mask_phone(phone), exc_info=True)
            await self.sender.send_text(phone, self.fallback_text)
            return

        if reply is None:
            sent = await self.sender.send_text(phone, self.fallback_text)
            logger.info("TURN|fallback_sent|phone=%s|sent=%s", mask_phone(phone), sent)
            return

        sent = await self.sender.send_text(phone, reply)
        if sent:
            logger.info("TURN|reply_sent|phone=%s|chars=%d", mask_phone(phone), len(reply))
        else:
            logger.error("TURN|reply_not_delivered|phone=%s", mask_phone(phone))

    async def _run_turn(self, phone: str, batch: List[InboundMessage]) -> Optional[str]:
        """Generate the reply and record the turn; None when the AI has no answer."""
        async with self.store.turn(phone) as turn:
            if turn.history:
                logger.info(
                    "TURN|history_loaded|phone=%s|messages=%d|backend=%s",
                    mask_phone(phone), len(turn.history), turn.backend,
                )

            prompt = await self.prompt_builder.build(phone, turn.history, batch)
            reply = await self.llm.ask(prompt)
            if reply is None:
                logger.error("TURN|ai_no_response|phone=%s", mask_phone(phone))
                return None

            for msg in batch:
                turn.append(ChatMessage(role="user", content=format_for_history(msg), timestamp=msg.timestamp))
            turn.append(ChatMessage(role="assistant", content=reply, timestamp=now_ms()))

        logger.info(
            "TURN|saved|phone=%s|messages=%d", mask_phone(phone), len(turn.history) + len(turn.pending)
        )
        return reply


class InboundProcessor:
    """Runs the consent state machine, resolves media, then batches the message."""

    def __init__(
        self,
        opt_out: OptOutStateMachine,
        buffer: MessageBuffer,
        sender: WhatsAppSender,
        media_resolver: Optional[MediaResolver] = None,
        summary_tracker: Optional[SummaryTracker] = None,
    ):
        self.opt_out = opt_out
        self.buffer = buffer
        self.sender = sender
        self.media_resolver = media_resolver
        self.summary_tracker = summary_tracker

    async def process(self, message: InboundMessage) -> str:
        phone = message.phone

        if await self.opt_out.on_inbound(message):
            return OUTCOME_OPTED_OUT

        if message.message_type in ("audio", "image") and self.media_resolver is not None:
            resolved = await self.media_resolver(message)
            if resolved:
                message.text = resolved
            else:
                logger.warning("MSG|media_unresolved|phone=%s|type=%s", mask_phone(phone), message.message_type)

        if not message.has_text:
            await self.sender.send_text(phone, MEDIA_FAILURE_TEXT)
            return OUTCOME_MEDIA_FAILED

        # Admission follows every check that can reject the message
        self.buffer.admit(phone, message)

        if self.summary_tracker is not None:
            await self.summary_tracker.track_user_message(phone, (message.sender_name or "").strip())
        return OUTCOME_BUFFERED
