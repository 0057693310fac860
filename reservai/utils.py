"""Shared utilities used across the booking engine."""

import re
import unicodedata
from datetime import datetime
from zoneinfo import ZoneInfo

from reservai.config import settings

_TRANSPORT_PREFIX = re.compile(r"^[a-z]+:", re.IGNORECASE)


def normalize_contact(value: str) -> str:
    """Normalize a contact key by dropping the transport prefix and phone punctuation.

    Examples:
        >>> normalize_contact("whatsapp:+55 (11) 99999-0000")
        '+5511999990000'
        >>> normalize_contact("11 99999 0000")
        '11999990000'
    """
    value = _TRANSPORT_PREFIX.sub("", value.strip()).strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    return re.sub(r"[^\d]", "", value)


def normalize_text(value: str) -> str:
    """Lower-case, trim, collapse whitespace and drop accents for lookups.

    Examples:
        >>> normalize_text("  Sábado ")
        'sabado'
        >>> normalize_text("Terça-Feira")
        'terca-feira'
    """
    decomposed = unicodedata.normalize("NFKD", value.strip().lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", stripped)


def local_now() -> datetime:
    """Current wall-clock time in the business timezone, without tzinfo.

    Slot timestamps are stored as naive business-local times, so every
    comparison against them goes through this clock.
    """
    return datetime.now(ZoneInfo(settings.business.timezone)).replace(tzinfo=None)


def to_local_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive business-local time; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(ZoneInfo(settings.business.timezone)).replace(tzinfo=None)


# Indexed by datetime.weekday(): Monday is 0.
WEEKDAY_LABELS: tuple[str, ...] = (
    "segunda-feira",
    "terça-feira",
    "quarta-feira",
    "quinta-feira",
    "sexta-feira",
    "sábado",
    "domingo",
)


def weekday_label(value: datetime) -> str:
    """Localized weekday name stored alongside each slot.

    Examples:
        >>> weekday_label(datetime(2026, 10, 23, 10, 0))
        'sexta-feira'
    """
    return WEEKDAY_LABELS[value.weekday()]
