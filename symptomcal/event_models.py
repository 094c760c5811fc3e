"""
Event data models for the symptom calendar.
Defines SuggestedEvent (from LLM), CalendarEvent (persisted), the typed
eventData variants and AbnormalRange (derived by analysis).
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from dateutil import parser as dateutil_parser
from dateutil import tz as dateutil_tz


class EventType(str, Enum):
    PAIN = "pain"
    SYMPTOM = "symptom"
    MEDICATION_REMINDER = "medication-reminder"
    MEDICAL_APPOINTMENT = "medical-appointment"
    EVENT = "event"

    @classmethod
    def is_known(cls, value: Any) -> bool:
        return isinstance(value, str) and value in cls._value2member_map_

    @classmethod
    def parse(cls, value: Any) -> "EventType":
        """Map a raw type string onto the enum. Unknown values fail closed to symptom."""
        if isinstance(value, EventType):
            return value
        if cls.is_known(value):
            return cls(value)
        return cls.SYMPTOM


PAIN_LEVELS = ("mild", "moderate", "severe")
RECURRING_PATTERNS = ("daily", "weekly", "custom")
WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass
class SuggestedEvent:
    """
    Raw event proposed by the chat or analysis pipeline.
    This is the unvalidated output of the text model; never persisted as-is.
    """
    title: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None  # YYYY-MM-DD
    time: Optional[str] = None  # HH:MM, 24 hour
    duration: Any = None  # minutes
    event_data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SuggestedEvent":
        event_data = data.get("eventData", data.get("event_data"))
        return cls(
            title=data.get("title"),
            type=data.get("type"),
            description=data.get("description"),
            date=data.get("date"),
            time=data.get("time"),
            duration=data.get("duration"),
            event_data=dict(event_data) if isinstance(event_data, dict) else {},
        )

    def has_title(self) -> bool:
        return isinstance(self.title, str) and self.title.strip() != ""


# ---------------------------------------------------------------------------
# eventData variants
# ---------------------------------------------------------------------------

def _clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


@dataclass
class PainData:
    """Attributes of pain and symptom events."""
    pain_level: Optional[str] = None
    location: Optional[str] = None
    severity: Optional[int] = None
    notes: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    KEYS = ("painLevel", "location", "severity", "notes")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PainData":
        level = _clean_str(data.get("painLevel"))
        if level is not None:
            level = level.lower()
            if level not in PAIN_LEVELS:
                level = None
        severity = _coerce_int(data.get("severity"))
        if severity is not None:
            severity = min(10, max(1, severity))
        return cls(
            pain_level=level,
            location=_clean_str(data.get("location")),
            severity=severity,
            notes=_clean_str(data.get("notes")),
            extra={k: v for k, v in data.items() if k not in cls.KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        result = dict(self.extra)
        result.update(_drop_none({
            "painLevel": self.pain_level,
            "location": self.location,
            "severity": self.severity,
            "notes": self.notes,
        }))
        return result


@dataclass
class MedicationData:
    medication: Optional[str] = None
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    taken: bool = False
    taken_at: Optional[str] = None
    is_recurring: bool = False
    recurring_pattern: str = "daily"
    recurring_days: List[str] = field(default_factory=list)
    recurring_interval: int = 1
    recurring_end_date: Optional[str] = None
    recurring_times: List[str] = field(default_factory=list)
    recurring_id: Optional[str] = None
    notes: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    KEYS = (
        "medication", "dosage", "frequency", "taken", "takenAt", "isRecurring",
        "recurringPattern", "recurringDays", "recurringInterval", "recurringEndDate",
        "recurringTimes", "recurringId", "notes",
    )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MedicationData":
        pattern = _clean_str(data.get("recurringPattern")) or "daily"
        pattern = pattern.lower()
        if pattern not in RECURRING_PATTERNS:
            pattern = "daily"
        interval = _coerce_int(data.get("recurringInterval"))
        days = data.get("recurringDays") or []
        times = data.get("recurringTimes") or []
        if isinstance(days, str):
            days = [days]
        if isinstance(times, str):
            times = [times]
        return cls(
            medication=_clean_str(data.get("medication")),
            dosage=_clean_str(data.get("dosage")),
            frequency=_clean_str(data.get("frequency")),
            taken=_coerce_bool(data.get("taken", False)),
            taken_at=_clean_str(data.get("takenAt")),
            is_recurring=_coerce_bool(data.get("isRecurring", False)),
            recurring_pattern=pattern,
            recurring_days=[str(d).strip().lower() for d in days if str(d).strip()],
            recurring_interval=interval if interval and interval > 0 else 1,
            recurring_end_date=_clean_str(data.get("recurringEndDate")),
            recurring_times=[str(t) for t in times if t is not None],
            recurring_id=_clean_str(data.get("recurringId")),
            notes=_clean_str(data.get("notes")),
            extra={k: v for k, v in data.items() if k not in cls.KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        result = dict(self.extra)
        result.update(_drop_none({
            "medication": self.medication,
            "dosage": self.dosage,
            "frequency": self.frequency,
            "taken": self.taken,
            "takenAt": self.taken_at,
            "notes": self.notes,
        }))
        if self.is_recurring:
            result.update(_drop_none({
                "isRecurring": True,
                "recurringPattern": self.recurring_pattern,
                "recurringDays": list(self.recurring_days),
                "recurringInterval": self.recurring_interval,
                "recurringEndDate": self.recurring_end_date,
                "recurringTimes": list(self.recurring_times),
                "recurringId": self.recurring_id,
            }))
        elif self.recurring_id:
            result["recurringId"] = self.recurring_id
        return result


@dataclass
class AppointmentData:
    doctor_name: Optional[str] = None
    appointment_type: Optional[str] = None
    notes: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    KEYS = ("doctorName", "appointmentType", "notes")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppointmentData":
        return cls(
            doctor_name=_clean_str(data.get("doctorName")),
            appointment_type=_clean_str(data.get("appointmentType")),
            notes=_clean_str(data.get("notes")),
            extra={k: v for k, v in data.items() if k not in cls.KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        result = dict(self.extra)
        result.update(_drop_none({
            "doctorName": self.doctor_name,
            "appointmentType": self.appointment_type,
            "notes": self.notes,
        }))
        return result


@dataclass
class GenericData:
    """Fallback bag for event types without a dedicated shape."""
    notes: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenericData":
        return cls(
            notes=_clean_str(data.get("notes")),
            extra={k: v for k, v in data.items() if k != "notes"},
        )

    def to_dict(self) -> Dict[str, Any]:
        result = dict(self.extra)
        if self.notes is not None:
            result["notes"] = self.notes
        return result


def parse_event_data(event_type: EventType, data: Optional[Dict[str, Any]]):
    """Parse a raw eventData dict into the variant for the given type."""
    data = data if isinstance(data, dict) else {}
    if event_type in (EventType.PAIN, EventType.SYMPTOM):
        return PainData.from_dict(data)
    if event_type == EventType.MEDICATION_REMINDER:
        return MedicationData.from_dict(data)
    if event_type == EventType.MEDICAL_APPOINTMENT:
        return AppointmentData.from_dict(data)
    return GenericData.from_dict(data)


# ---------------------------------------------------------------------------
# Persisted events
# ---------------------------------------------------------------------------

def local_day(moment: datetime) -> date:
    """Calendar date of a datetime in the system timezone."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(dateutil_tz.tzlocal())
    return moment.date()


@dataclass
class CalendarEvent:
    id: str
    title: str
    type: EventType
    start: datetime
    end: datetime
    description: str = ""
    all_day: bool = False
    event_data: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None

    def __post_init__(self):
        self.type = EventType.parse(self.type)
        if self.end < self.start:
            raise ValueError(f"Event '{self.title}' ends before it starts")

    def day(self) -> date:
        return local_day(self.start)

    def data(self):
        return parse_event_data(self.type, self.event_data)

    def severity(self) -> Optional[int]:
        if self.type not in (EventType.PAIN, EventType.SYMPTOM):
            return None
        return self.data().severity

    def location(self) -> Optional[str]:
        if self.type not in (EventType.PAIN, EventType.SYMPTOM):
            return None
        return self.data().location

    def is_medication_taken(self) -> bool:
        return _coerce_bool(self.event_data.get("taken", False))

    def copy_with(self, **changes) -> "CalendarEvent":
        return replace(self, **changes)

    def to_context_dict(self, detailed: bool = False) -> Dict[str, Any]:
        """Compact representation used in chat prompts."""
        local_start = self.start.astimezone(dateutil_tz.tzlocal()) if self.start.tzinfo else self.start
        context = {
            "title": self.title,
            "type": self.type.value,
            "date": local_start.strftime("%Y-%m-%d"),
            "time": local_start.strftime("%H:%M"),
            "description": self.description,
        }
        if detailed:
            for key in ("severity", "painLevel", "location", "medication", "notes"):
                context[key] = self.event_data.get(key)
        else:
            context["eventData"] = self.event_data
        return context


@dataclass(frozen=True, order=True)
class AbnormalRange:
    """Date span flagged by symptom analysis. Derived, never persisted."""
    start: date
    end: date
    reason: str

    def covers(self, day: date) -> bool:
        return self.start <= day <= self.end


# ---------------------------------------------------------------------------
# Record mapping (BaaS collection "calendar_data")
# ---------------------------------------------------------------------------

def parse_record_datetime(value: str) -> datetime:
    parsed = dateutil_parser.parse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dateutil_tz.tzutc())
    return parsed.astimezone(dateutil_tz.tzlocal())


def format_record_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dateutil_tz.tzlocal())
    utc = value.astimezone(dateutil_tz.tzutc())
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def record_to_event(record: Dict[str, Any]) -> CalendarEvent:
    """Convert a stored record into a CalendarEvent."""
    return CalendarEvent(
        id=str(record["id"]),
        title=record.get("title") or "",
        type=EventType.parse(record.get("event_type")),
        start=parse_record_datetime(record["start_date"]),
        end=parse_record_datetime(record["end_date"]),
        description=record.get("description") or "",
        all_day=bool(record.get("all_day", False)),
        event_data=dict(record.get("event_data") or {}),
        user_id=record.get("user_id"),
    )


def event_to_record_data(event: CalendarEvent, user_id: str) -> Dict[str, Any]:
    """Convert a CalendarEvent into the record body sent to the store."""
    return {
        "user_id": user_id,
        "title": event.title,
        "event_type": event.type.value,
        "description": event.description or "",
        "start_date": format_record_datetime(event.start),
        "end_date": format_record_datetime(event.end),
        "all_day": event.all_day,
        "event_data": event.event_data or {},
    }
