"""
Delivers conversation summaries to the configured webhook with httpx.
"""
import logging
from typing import Any, Dict, Optional

import httpx
from httpx import Timeout

from ..core.config import settings
from ..core.logger import mask_phone

log = logging.getLogger(__name__)


class SummaryWebhookClient:
    def __init__(
        self,
        url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = settings.SUMMARY_WEBHOOK_URL if url is None else url
        self.timeout_seconds = timeout_seconds or settings.SUMMARY_WEBHOOK_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.url)

    async def send(self, payload: Dict[str, Any]) -> bool:
        """POST one summary. Returns True on a 2xx response."""
        phone = mask_phone(str(payload.get("phone", "")))
        if not self.configured:
            log.warning("SUMMARY|webhook_not_configured|phone=%s", phone)
            return False

        timeout = Timeout(self.timeout_seconds, connect=self.timeout_seconds)
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(url=self.url, json=payload)
        except httpx.HTTPError as e:
            log.error("SUMMARY|webhook_error|phone=%s|error=%s", phone, e)
            return False

        if not 200 <= response.status_code < 300:
            log.error("SUMMARY|webhook_failed|phone=%s|status=%d", phone, response.status_code)
            return False
        return True
