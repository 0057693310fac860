"""
Slot Resolver: free-text date/time answers to concrete slots.

Precedence for the requested moment:
1. A positive integer picks that position (1-based) of the list shown.
2. A weekday name plus a time ("Sexta 10:00", "sábado às 9h") means the
   next calendar occurrence of that weekday; today counts only if the
   time has not passed yet, otherwise it moves a week ahead.
3. A structured date-time parameter from the classifier.
4. A bare "HH:MM" means today at that time, or tomorrow if already past.

The requested moment is then matched against the store: same weekday
label and same hour:minute, still available and in the future. Without an
exact match the available slot closest in absolute time is proposed,
ties going to the earliest one in the list.

Usage:
    resolver = SlotResolver(SlotRepository(database))
    result = resolver.resolve("Sexta 10:00", offered, classifier_params)
    if result.kind == ResolutionKind.NEAREST:
        ...  # ask the customer to confirm result.slot
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional

from reservai.schemas.booking_schema import AvailableSlot
from reservai.tools.availability import SlotRepository
from reservai.utils import local_now, normalize_text, to_local_naive, weekday_label

logger = logging.getLogger(__name__)

WEEKDAY_TOKENS: dict[str, int] = {
    "segunda": 0,
    "terca": 1,
    "quarta": 2,
    "quinta": 3,
    "sexta": 4,
    "sabado": 5,
    "domingo": 6,
}

_LIST_POSITION = re.compile(r"^\s*(\d{1,3})\s*[.)]?\s*$")
_WEEKDAY = re.compile(
    r"\b(" + "|".join(WEEKDAY_TOKENS) + r")(?:[\s-]*feira)?\b"
)
_TIME = re.compile(
    r"(?<![\d/:])([01]?\d|2[0-3])"
    r"(?:\s*[:h]\s*([0-5]\d))?"
    r"(\s*(?:horas?|hrs?|hs|h))?"
    r"(?![\d/])"
)
_CLOCK = re.compile(r"(?<![\d:])([01]?\d|2[0-3]):([0-5]\d)(?![\d:])")


class ResolutionKind(str, Enum):
    EXACT = "exact"
    NEAREST = "nearest"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class SlotResolution:
    """Outcome of resolving one answer.

    ``requested`` is the moment the customer asked for; it is None when
    the text could not be read as a date/time at all.
    """
    kind: ResolutionKind
    slot: Optional[AvailableSlot] = None
    requested: Optional[datetime] = None


def pick_listed_slot(text: str, candidates: list[AvailableSlot]) -> Optional[AvailableSlot]:
    """Return ``candidates[n-1]`` when the text is just a positive integer n."""
    match = _LIST_POSITION.match(text)
    if not match:
        return None
    position = int(match.group(1))
    if 1 <= position <= len(candidates):
        return candidates[position - 1]
    return None


def extract_weekday(text: str) -> Optional[int]:
    """Weekday index (Monday=0) of the first weekday name in the text."""
    match = _WEEKDAY.search(normalize_text(text))
    if not match:
        return None
    return WEEKDAY_TOKENS[match.group(1)]


def extract_time(text: str) -> Optional[tuple[int, int]]:
    """(hour, minute) from the text, preferring tokens with minutes or a unit."""
    bare: Optional[tuple[int, int]] = None
    for match in _TIME.finditer(normalize_text(text)):
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        if match.group(2) or match.group(3):
            return hour, minute
        if bare is None:
            bare = (hour, minute)
    return bare


def next_weekday_occurrence(weekday: int, hour: int, minute: int, now: datetime) -> datetime:
    """Next calendar date on ``weekday`` at hour:minute, strictly after ``now``."""
    days_ahead = (weekday - now.weekday()) % 7
    candidate = (now + timedelta(days=days_ahead)).replace(
        hour=hour, minute=minute, second=0, microsecond=0
    )
    if days_ahead == 0 and candidate <= now:
        candidate += timedelta(days=7)
    return candidate


def parse_classifier_datetime(parameters: dict[str, Any]) -> Optional[datetime]:
    """First structured date-time found in the classifier parameters.

    Accepts ISO strings directly under a key or nested records carrying a
    ``date_time`` field (e.g. ``{"horario_escolhido": {"date_time": ...}}``).
    """
    return _find_datetime(parameters, depth=0)


def _find_datetime(value: Any, depth: int) -> Optional[datetime]:
    if depth > 3:
        return None
    if isinstance(value, str):
        return _parse_iso(value)
    if isinstance(value, dict):
        ordered = sorted(value.items(), key=lambda item: item[0] != "date_time")
        for _, nested in ordered:
            found = _find_datetime(nested, depth + 1)
            if found is not None:
                return found
    if isinstance(value, (list, tuple)):
        for nested in value:
            found = _find_datetime(nested, depth + 1)
            if found is not None:
                return found
    return None


def _parse_iso(value: str) -> Optional[datetime]:
    value = value.strip()
    if "T" not in value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return to_local_naive(parsed).replace(second=0, microsecond=0)


def parse_requested_datetime(
    text: str, parameters: dict[str, Any], now: datetime
) -> Optional[datetime]:
    """Apply rules 2 to 4 of the precedence list. None if nothing parses."""
    weekday = extract_weekday(text)
    clock = extract_time(text)
    if weekday is not None and clock is not None:
        return next_weekday_occurrence(weekday, clock[0], clock[1], now)

    from_classifier = parse_classifier_datetime(parameters)
    if from_classifier is not None:
        return from_classifier

    match = _CLOCK.search(text)
    if match:
        candidate = now.replace(
            hour=int(match.group(1)), minute=int(match.group(2)), second=0, microsecond=0
        )
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate
    return None


def find_nearest(requested: datetime, slots: list[AvailableSlot]) -> Optional[AvailableSlot]:
    """Slot with the smallest absolute distance to ``requested``; first one wins ties."""
    best: Optional[AvailableSlot] = None
    best_distance: Optional[timedelta] = None
    for slot in slots:
        distance = abs(slot.start - requested)
        if best_distance is None or distance < best_distance:
            best, best_distance = slot, distance
    return best


class SlotResolver:
    """Resolves a customer's date/time answer against live availability."""

    def __init__(
        self,
        slots: SlotRepository,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self._slots = slots
        self._clock = clock

    def resolve(
        self,
        text: str,
        candidates: list[AvailableSlot],
        parameters: Optional[dict[str, Any]] = None,
        staff_id: Optional[int] = None,
    ) -> SlotResolution:
        now = self._clock()

        listed = pick_listed_slot(text, candidates)
        if listed is not None:
            if listed.available and listed.start > now:
                return SlotResolution(ResolutionKind.EXACT, listed, listed.start)
            requested = listed.start
            logger.debug("Listed slot %s was taken, looking for the nearest", listed.id)
        else:
            requested = parse_requested_datetime(text, parameters or {}, now)
            if requested is None:
                logger.debug("No date/time found in '%s'", text)
                return SlotResolution(ResolutionKind.NOT_FOUND)

        exact = self._slots.find_exact(
            weekday_label(requested), requested.hour, requested.minute, now, staff_id
        )
        if exact is not None:
            return SlotResolution(ResolutionKind.EXACT, exact, requested)

        nearest = find_nearest(requested, self._slots.list_available(now, staff_id))
        if nearest is not None:
            logger.debug(
                "No exact slot for %s, nearest is slot %s at %s",
                requested, nearest.id, nearest.start,
            )
            return SlotResolution(ResolutionKind.NEAREST, nearest, requested)
        return SlotResolution(ResolutionKind.NOT_FOUND, requested=requested)
