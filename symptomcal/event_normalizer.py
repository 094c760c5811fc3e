"""
Event normalizer for converting SuggestedEvent to NormalizedEvent.
Handles field defaulting, date/time parsing and normalization to system
timezone datetime objects.
"""

import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from dateutil import parser as dateutil_parser
from dateutil import tz as dateutil_tz

from symptomcal.errors import ValidationError
from symptomcal.event_models import (
    CalendarEvent,
    EventType,
    SuggestedEvent,
    parse_event_data,
)
from symptomcal.logging_helper import Log

DEFAULT_DURATION_MINUTES = 30

_DATE_RE = re.compile(r"^\s*(\d{4}-\d{2}-\d{2})\s*$")
_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


class NormalizedEvent:
    """
    Validated calendar event candidate with proper datetime objects.
    Ready for dedup checks and persistence.
    """

    def __init__(
        self,
        title: str,
        event_type: EventType,
        start_time: datetime,
        end_time: datetime,
        description: str = "",
        event_data: Optional[Dict[str, Any]] = None
    ):
        self.title = title
        self.event_type = event_type
        self.start_time = start_time  # System timezone datetime
        self.end_time = end_time      # System timezone datetime
        self.description = description
        self.event_data = event_data or {}

    @property
    def date_str(self) -> str:
        return self.start_time.strftime("%Y-%m-%d")

    @property
    def time_str(self) -> str:
        return self.start_time.strftime("%H:%M")

    def day(self) -> date:
        return self.start_time.date()

    def duration_minutes(self) -> int:
        """Get event duration in minutes."""
        delta = self.end_time - self.start_time
        return int(delta.total_seconds() / 60)

    def to_calendar_event(self) -> CalendarEvent:
        """Build the event passed to the store; the store assigns the id."""
        return CalendarEvent(
            id="",
            title=self.title,
            type=self.event_type,
            start=self.start_time,
            end=self.end_time,
            description=self.description,
            event_data=dict(self.event_data),
        )

    def __repr__(self) -> str:
        return f"NormalizedEvent({self.title!r}, {self.event_type.value}, {self.start_time.isoformat()})"


class ValidationResult:
    """Outcome of normalizing one suggestion: a candidate or a list of errors."""

    def __init__(self, candidate: Optional[NormalizedEvent], errors: List[ValidationError], warnings: List[str]):
        self.candidate = candidate
        self.errors = errors
        self.warnings = warnings

    @property
    def ok(self) -> bool:
        return self.candidate is not None and not self.errors


def local_now(now: Optional[datetime] = None) -> datetime:
    """Current time (or the given time) as a system timezone datetime, truncated to minutes."""
    system_tz = dateutil_tz.tzlocal()
    if now is None:
        now = datetime.now(system_tz)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=system_tz)
    return now.replace(second=0, microsecond=0)


def parse_date(date_str: Any) -> Optional[date]:
    """Parse a strict YYYY-MM-DD string, or None."""
    if not isinstance(date_str, str):
        return None
    match = _DATE_RE.match(date_str)
    if not match:
        return None
    try:
        return dateutil_parser.isoparse(match.group(1)).date()
    except (ValueError, OverflowError):
        return None


def parse_time(time_str: Any) -> Optional[tuple]:
    """Parse a 24 hour HH:MM string into (hour, minute), or None."""
    if not isinstance(time_str, str):
        return None
    match = _TIME_RE.match(time_str)
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return hour, minute


def _parse_duration(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        minutes = int(float(value))
    except (TypeError, ValueError):
        return None
    return minutes if minutes > 0 else None


def normalize(
    raw: Union[SuggestedEvent, Dict[str, Any]],
    now: Optional[datetime] = None
) -> ValidationResult:
    """
    Normalize a suggested event into a NormalizedEvent with system timezone datetimes.

    Malformed fields are replaced by their defaults and reported as warnings;
    only a missing title makes the suggestion unusable.

    Args:
        raw: SuggestedEvent or the dict parsed from model output
        now: reference time for defaults (system "now" when omitted)

    Returns:
        ValidationResult with the candidate, or with errors when it cannot be built
    """
    Log.section("Event Normalizer")

    if isinstance(raw, dict):
        suggestion = SuggestedEvent.from_dict(raw)
    elif isinstance(raw, SuggestedEvent):
        suggestion = raw
    else:
        Log.warn(f"Suggestion is not an object: {type(raw).__name__}")
        Log.kv({"stage": "validate", "result": "failed", "reason": "not_an_object"})
        return ValidationResult(None, [ValidationError("suggestion is not an object")], [])

    Log.info(f"Normalizing suggestion: {suggestion.title}")

    if not suggestion.has_title():
        Log.warn("Suggestion missing title - cannot normalize")
        Log.kv({"stage": "validate", "result": "failed", "reason": "missing_title"})
        return ValidationResult(None, [ValidationError("missing title", field="title")], [])

    warnings: List[str] = []
    current = local_now(now)

    if not EventType.is_known(suggestion.type):
        if suggestion.type is not None:
            warnings.append(f"unknown type '{suggestion.type}', using symptom")
        else:
            warnings.append("missing type, using symptom")
    event_type = EventType.parse(suggestion.type)

    day = parse_date(suggestion.date)
    if day is None:
        if suggestion.date is not None:
            warnings.append(f"unparsable date '{suggestion.date}', using today")
        day = current.date()

    clock = parse_time(suggestion.time)
    if clock is None:
        if suggestion.time is not None:
            warnings.append(f"unparsable time '{suggestion.time}', using current time")
        clock = (current.hour, current.minute)

    duration = _parse_duration(suggestion.duration)
    if duration is None:
        if suggestion.duration is not None:
            warnings.append(f"invalid duration '{suggestion.duration}', using {DEFAULT_DURATION_MINUTES}")
        duration = DEFAULT_DURATION_MINUTES

    start_datetime = datetime(day.year, day.month, day.day, clock[0], clock[1], tzinfo=current.tzinfo)
    end_datetime = start_datetime + timedelta(minutes=duration)

    event_data = parse_event_data(event_type, suggestion.event_data).to_dict()

    normalized = NormalizedEvent(
        title=suggestion.title.strip(),
        event_type=event_type,
        start_time=start_datetime,
        end_time=end_datetime,
        description=(suggestion.description or "").strip(),
        event_data=event_data,
    )

    for warning in warnings:
        Log.warn(f"Defaulted field: {warning}")

    Log.info(f"Normalized event: {normalized.title} at {normalized.start_time}")
    Log.kv({
        "stage": "validate",
        "result": "success",
        "type": event_type.value,
        "start": normalized.start_time.isoformat(),
        "end": normalized.end_time.isoformat(),
        "duration_min": normalized.duration_minutes(),
        "defaulted": len(warnings),
    })

    return ValidationResult(normalized, [], warnings)
