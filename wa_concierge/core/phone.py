"""
Phone number utilities for the WhatsApp identifiers used as store keys.
"""
import re

from .logger import mask_phone

__all__ = ["to_international", "to_whatsapp_jid", "to_e164", "jid_to_phone", "mask_phone"]


def to_international(raw: str, country_code: str = "972") -> str:
    """
    Convert a phone number to international digits (no plus sign).

    Args:
        raw: Raw phone number, local ("052...") or international ("97252...")
        country_code: Country code prepended to local numbers

    Returns:
        Digits-only international number (e.g., 972523006544)

    Raises:
        ValueError: If the phone number has no digits
    """
    if not raw:
        raise ValueError("Phone number cannot be empty")

    # Remove all non-digit characters
    cleaned = re.sub(r"\D", "", raw)
    if not cleaned:
        raise ValueError(f"Invalid phone number format: {raw}")

    if cleaned.startswith(country_code):
        return cleaned
    if cleaned.startswith("0"):
        return country_code + cleaned[1:]
    return country_code + cleaned


def to_whatsapp_jid(phone: str) -> str:
    """Destination used for text messages."""
    return phone if "@" in phone else f"{phone}@s.whatsapp.net"


def to_e164(phone: str) -> str:
    """Destination used for media messages."""
    return phone if phone.startswith("+") else f"+{phone}"


def jid_to_phone(remote_jid: str) -> str:
    """Strip the WhatsApp domain from a remoteJid."""
    return remote_jid.split("@")[0] if "@" in remote_jid else remote_jid
