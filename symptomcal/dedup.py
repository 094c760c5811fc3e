"""
Duplicate detection for suggested events.

A candidate duplicates an existing event when both have the same type, start
on the same local calendar day, and the first word of the candidate title
appears (case-insensitively) inside the existing title.
"""

from typing import Iterable, NamedTuple, Optional, Union

from symptomcal.event_models import CalendarEvent, local_day
from symptomcal.event_normalizer import NormalizedEvent
from symptomcal.logging_helper import Log

EventLike = Union[CalendarEvent, NormalizedEvent]


class DuplicateCheck(NamedTuple):
    is_duplicate: bool
    matched: Optional[EventLike] = None


def _fields(event: EventLike):
    if isinstance(event, NormalizedEvent):
        return event.event_type, event.title, event.start_time
    return event.type, event.title, event.start


def title_key(title: str) -> str:
    """First whitespace-delimited token of a title, lowercased."""
    parts = (title or "").lower().split()
    return parts[0] if parts else ""


def is_same_event(candidate: EventLike, existing: EventLike) -> bool:
    cand_type, cand_title, cand_start = _fields(candidate)
    ex_type, ex_title, ex_start = _fields(existing)
    if cand_type != ex_type:
        return False
    if local_day(cand_start) != local_day(ex_start):
        return False
    key = title_key(cand_title)
    return bool(key) and key in (ex_title or "").lower()


def find_duplicate(candidate: EventLike, existing: Iterable[EventLike]) -> DuplicateCheck:
    """
    Look for an existing event that the candidate would duplicate.

    Args:
        candidate: validated candidate
        existing: the user's current events (and anything created earlier in the batch)

    Returns:
        DuplicateCheck with the first matching event, if any
    """
    for event in existing:
        if is_same_event(candidate, event):
            Log.kv({
                "stage": "dedup",
                "result": "duplicate",
                "candidate": _fields(candidate)[1],
                "matched": _fields(event)[1],
            })
            return DuplicateCheck(True, event)
    return DuplicateCheck(False, None)
