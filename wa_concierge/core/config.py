"""
Configuration settings for the WhatsApp concierge.
Environment driven, with a .env file loaded for local runs.
"""
import logging
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT_PATH = str(
    Path(__file__).resolve().parent.parent / "prompts" / "system_prompt.txt"
)
DEFAULT_SUMMARY_PROMPT_PATH = str(
    Path(__file__).resolve().parent.parent / "prompts" / "summary_prompt.txt"
)

FALLBACK_SYSTEM_PROMPT = (
    "You are a friendly assistant answering customers on WhatsApp. "
    "Keep replies short and helpful."
)

FALLBACK_SUMMARY_PROMPT = (
    "Summarize the conversation for the sales team: who the customer is, what they "
    "asked about, their main concerns and the agreed next step."
)


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Server
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    # WA Sender
    WA_SENDER_BASE_URL: str = "https://wasenderapi.com/api"
    WA_SENDER_API_KEY: str = ""
    WA_SENDER_WEBHOOK_SECRET: str = ""
    SKIP_WEBHOOK_VERIFICATION: bool = False

    # OpenAI
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4-turbo-preview"
    OPENAI_MAX_TOKENS: int = 1000
    OPENAI_TEMPERATURE: float = 0.7
    OPENAI_TIMEOUT_SECONDS: float = 120.0
    SYSTEM_PROMPT_PATH: str = DEFAULT_SYSTEM_PROMPT_PATH

    # Conversation
    MAX_HISTORY_MESSAGES: int = 40
    BATCH_WINDOW_MS: int = 8000

    # Delivery pacing (human-like delay) and 429 retries
    MIN_RESPONSE_DELAY_MS: int = 1500
    MAX_RESPONSE_DELAY_MS: int = 3000
    SEND_MAX_RETRIES: int = 3
    SEND_RETRY_DELAY_MS: int = 5000
    SEND_TIMEOUT_SECONDS: float = 30.0

    # Redis
    REDIS_ENABLED: bool = False
    REDIS_HOST: str = ""
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: str = ""
    REDIS_TTL_DAYS: int = 7
    CUSTOMER_TTL_DAYS: int = 365
    MEETING_TTL_DAYS: int = 3

    # Meeting reminders
    REMINDERS_ENABLED: bool = True
    REMINDER_DAY_OF_MEETING_TIME: str = "09:00"
    REMINDER_MINUTES_BEFORE: int = 45
    REMINDER_WINDOW_MINUTES: int = 3
    REMINDER_CHECK_INTERVAL_SECONDS: float = 60.0

    # Locale
    TIMEZONE: str = "Asia/Jerusalem"
    DEFAULT_COUNTRY_CODE: str = "972"

    # Inbound deduplication
    DEDUP_TTL_SECONDS: float = 60.0
    DEDUP_MAX_ENTRIES: int = 10000
    DEDUP_CLEAR_INTERVAL_SECONDS: float = 3600.0

    # Conversation summaries
    SUMMARY_ENABLED: bool = False
    SUMMARY_WEBHOOK_URL: str = ""
    SUMMARY_DELAY_MINUTES: int = 30
    SUMMARY_MIN_MESSAGES: int = 4
    SUMMARY_CHECK_INTERVAL_SECONDS: float = 60.0
    SUMMARY_META_TTL_DAYS: int = 7
    SUMMARY_WEBHOOK_TIMEOUT_SECONDS: float = 10.0
    SUMMARY_PROMPT_PATH: str = DEFAULT_SUMMARY_PROMPT_PATH

    @property
    def chat_ttl_seconds(self) -> int:
        return self.REDIS_TTL_DAYS * 24 * 60 * 60

    @property
    def customer_ttl_seconds(self) -> int:
        return self.CUSTOMER_TTL_DAYS * 24 * 60 * 60

    @property
    def meeting_ttl_seconds(self) -> int:
        return self.MEETING_TTL_DAYS * 24 * 60 * 60

    @property
    def summary_meta_ttl_seconds(self) -> int:
        return self.SUMMARY_META_TTL_DAYS * 24 * 60 * 60

    @property
    def redis_url(self) -> str:
        host = self.REDIS_HOST or "localhost"
        return f"redis://{host}:{self.REDIS_PORT}/0"

    def missing_credentials(self) -> List[str]:
        """Names of required credentials that are not configured."""
        required = {
            "WA_SENDER_API_KEY": self.WA_SENDER_API_KEY,
            "WA_SENDER_WEBHOOK_SECRET": self.WA_SENDER_WEBHOOK_SECRET,
            "OPENAI_API_KEY": self.OPENAI_API_KEY,
        }
        return [name for name, value in required.items() if not value]


def load_system_prompt(path: str, fallback: str = FALLBACK_SYSTEM_PROMPT) -> str:
    """Read a prompt file, falling back to a short built-in prompt."""
    try:
        return Path(path).read_text(encoding="utf-8").strip()
    except OSError as e:
        logger.error("CONFIG|prompt_unreadable|path=%s|error=%s", path, e)
        return fallback


settings = Settings()
