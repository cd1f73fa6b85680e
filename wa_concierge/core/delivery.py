"""
Asynchronous delivery client for the WA Sender API.
Sends text and audio messages using httpx, pacing every attempt with a
human-like delay and retrying only on HTTP 429.
"""
import asyncio
import logging
import random
from typing import Any, Dict, Optional

import httpx
from httpx import Timeout

from .config import settings
from .errors import DeliveryError, RateLimitedError
from .phone import mask_phone, to_e164, to_whatsapp_jid

log = logging.getLogger(__name__)


def _mask_token(token: str) -> str:
    """Mask API token for logging - shows first 8 and last 4 chars"""
    if not token or len(token) < 12:
        return "***masked***"
    return f"{token[:8]}...{token[-4:]}"


class WhatsAppSender:
    """
    Outbound channel with retry policy.

    Every attempt waits a random delay in [min_delay_ms, max_delay_ms].
    A 429 is retried up to ``max_retries`` more times, waiting
    ``retry_delay_ms * attempt`` before each retry; any other failure ends
    the send.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        min_delay_ms: Optional[int] = None,
        max_delay_ms: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.WA_SENDER_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.WA_SENDER_API_KEY
        self.min_delay_ms = settings.MIN_RESPONSE_DELAY_MS if min_delay_ms is None else min_delay_ms
        self.max_delay_ms = settings.MAX_RESPONSE_DELAY_MS if max_delay_ms is None else max_delay_ms
        self.max_retries = settings.SEND_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay_ms = settings.SEND_RETRY_DELAY_MS if retry_delay_ms is None else retry_delay_ms
        self.timeout_seconds = timeout_seconds or settings.SEND_TIMEOUT_SECONDS
        self._transport = transport

    async def send_text(self, phone: str, text: str) -> bool:
        """Send a text message."""
        return await self.send(phone, {"to": to_whatsapp_jid(phone), "text": text})

    async def send_audio(self, phone: str, audio_url: str) -> bool:
        """Send a voice note hosted at ``audio_url``."""
        return await self.send(phone, {"to": to_e164(phone), "audioUrl": audio_url})

    async def send(self, phone: str, payload: Dict[str, Any]) -> bool:
        """
        Deliver one payload.

        Returns:
            True on success, False once the message is given up on
        """
        attempts = self.max_retries + 1

        for attempt in range(1, attempts + 1):
            await self._human_delay()
            try:
                await self._post(payload)
                log.info(
                    "DELIVERY|success|phone=%s|attempt=%d/%d",
                    mask_phone(phone), attempt, attempts,
                )
                return True

            except RateLimitedError:
                if attempt >= attempts:
                    log.error(
                        "DELIVERY|rate_limited|retries_exhausted|phone=%s|attempts=%d",
                        mask_phone(phone), attempts,
                    )
                    return False
                delay_ms = self.retry_delay_ms * attempt
                log.warning(
                    "DELIVERY|rate_limited|phone=%s|attempt=%d/%d|retry_in_ms=%d",
                    mask_phone(phone), attempt, attempts, delay_ms,
                )
                await asyncio.sleep(delay_ms / 1000.0)

            except DeliveryError as e:
                log.error(
                    "DELIVERY|error|phone=%s|status=%s|error=%s",
                    mask_phone(phone), e.status_code, e,
                )
                return False

        return False

    async def _human_delay(self):
        low, high = sorted((self.min_delay_ms, self.max_delay_ms))
        delay_ms = random.uniform(low, high)
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000.0)

    async def _post(self, payload: Dict[str, Any]) -> None:
        """
        POST to /send-message.

        Raises:
            RateLimitedError: on HTTP 429
            DeliveryError: on any other HTTP, network or provider failure
        """
        url = f"{self.base_url}/send-message"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        timeout = Timeout(self.timeout_seconds, connect=self.timeout_seconds)

        log.debug("DELIVERY|attempt|url=%s|key=%s", url, _mask_token(self.api_key))

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise DeliveryError(f"transport error: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError()
        if not 200 <= response.status_code < 300:
            raise DeliveryError(f"http_{response.status_code}", status_code=response.status_code)

        try:
            body = response.json()
        except ValueError:
            body = {}

        if not isinstance(body, dict) or not body.get("success"):
            error = body.get("error") if isinstance(body, dict) else None
            raise DeliveryError(
                f"provider rejected message: {error}",
                status_code=response.status_code,
            )
