"""
Recurring medication expansion.
Turns one recurring medication-reminder candidate into a bounded list of
concrete per-occurrence candidates.
"""

from datetime import date, datetime, timedelta
from typing import List, NamedTuple, Optional

from dateutil import rrule

from symptomcal.event_models import EventType, MedicationData, WEEKDAY_NAMES
from symptomcal.event_normalizer import NormalizedEvent, parse_date, parse_time
from symptomcal.logging_helper import Log

DEFAULT_RECURRENCE_DAYS = 90
OCCURRENCE_MINUTES = 30
MAX_OCCURRENCES = 500

_RRULE_WEEKDAYS = dict(zip(WEEKDAY_NAMES, (rrule.MO, rrule.TU, rrule.WE, rrule.TH, rrule.FR, rrule.SA, rrule.SU)))


def is_recurring(candidate: NormalizedEvent) -> bool:
    """True for medication reminders flagged isRecurring."""
    if candidate.event_type != EventType.MEDICATION_REMINDER:
        return False
    return MedicationData.from_dict(candidate.event_data).is_recurring


def recurrence_end(anchor: date, end_date_str: Optional[str]) -> date:
    """Inclusive last day of the recurrence: the given end date, else anchor + 90 days."""
    end_day = parse_date(end_date_str)
    if end_day is None:
        if end_date_str:
            Log.warn(f"Unparsable recurringEndDate '{end_date_str}', using {DEFAULT_RECURRENCE_DAYS} day default")
        end_day = anchor + timedelta(days=DEFAULT_RECURRENCE_DAYS)
    return end_day


def make_recurring_id(medication: str, anchor_start: datetime) -> str:
    """Grouping key shared by every occurrence of one schedule."""
    midnight = anchor_start.replace(hour=0, minute=0, second=0, microsecond=0)
    return f"{medication}-{int(midnight.timestamp() * 1000)}"


def _occurrence_days(data: MedicationData, anchor: date, end_day: date) -> List[date]:
    dtstart = datetime(anchor.year, anchor.month, anchor.day)
    until = datetime(end_day.year, end_day.month, end_day.day)

    if data.recurring_pattern == "weekly":
        weekdays = [_RRULE_WEEKDAYS[d] for d in data.recurring_days if d in _RRULE_WEEKDAYS]
        if not weekdays:
            Log.warn("Weekly recurrence without valid recurringDays - no occurrences")
            return []
        rule = rrule.rrule(rrule.DAILY, dtstart=dtstart, until=until, byweekday=weekdays)
    elif data.recurring_pattern == "custom":
        rule = rrule.rrule(rrule.DAILY, dtstart=dtstart, until=until, interval=max(1, data.recurring_interval))
    else:
        rule = rrule.rrule(rrule.DAILY, dtstart=dtstart, until=until)

    return [occurrence.date() for occurrence in rule]


def _occurrence_times(data: MedicationData, candidate: NormalizedEvent) -> List[tuple]:
    times = []
    for raw in data.recurring_times:
        text = str(raw).strip()
        if not text:
            continue
        clock = parse_time(text)
        if clock is None:
            Log.warn(f"Skipping unparsable recurring time '{text}'")
            continue
        times.append(clock)
    if not times:
        times.append((candidate.start_time.hour, candidate.start_time.minute))
    return times


class RecurringSchedule(NamedTuple):
    occurrences: List[NormalizedEvent]
    dropped: int = 0


def plan_recurring(candidate: NormalizedEvent) -> RecurringSchedule:
    """
    Expand a recurring medication reminder into concrete occurrences.

    Args:
        candidate: validated medication-reminder candidate with isRecurring set

    Returns:
        RecurringSchedule whose occurrences are in chronological order, each
        30 minutes long and sharing one recurringId. At most MAX_OCCURRENCES
        are kept; `dropped` counts the later ones that were cut off.
    """
    Log.section("Recurrence Expander")

    data = MedicationData.from_dict(candidate.event_data)
    anchor = candidate.start_time.date()
    end_day = recurrence_end(anchor, data.recurring_end_date)

    if end_day < anchor:
        Log.warn(f"Recurrence ends ({end_day}) before it starts ({anchor}) - no occurrences")
        Log.kv({"stage": "expand", "result": "empty", "reason": "end_before_start"})
        return RecurringSchedule([])

    days = _occurrence_days(data, anchor, end_day)
    times = _occurrence_times(data, candidate)

    medication = data.medication or candidate.title
    recurring_id = make_recurring_id(medication, candidate.start_time)
    tzinfo = candidate.start_time.tzinfo

    occurrence_data = MedicationData.from_dict(candidate.event_data)
    occurrence_data.is_recurring = True
    occurrence_data.recurring_id = recurring_id
    occurrence_data.taken = False
    occurrence_data.taken_at = None
    base_event_data = occurrence_data.to_dict()

    occurrences: List[NormalizedEvent] = []
    for day in days:
        for hour, minute in times:
            start = datetime(day.year, day.month, day.day, hour, minute, tzinfo=tzinfo)
            occurrences.append(NormalizedEvent(
                title=candidate.title,
                event_type=EventType.MEDICATION_REMINDER,
                start_time=start,
                end_time=start + timedelta(minutes=OCCURRENCE_MINUTES),
                description=candidate.description,
                event_data=dict(base_event_data),
            ))

    occurrences.sort(key=lambda occ: occ.start_time)
    dropped = max(0, len(occurrences) - MAX_OCCURRENCES)
    if dropped:
        Log.warn(f"Recurrence produced {len(occurrences)} occurrences, keeping first {MAX_OCCURRENCES}")
        occurrences = occurrences[:MAX_OCCURRENCES]

    Log.info(f"Expanded '{candidate.title}' into {len(occurrences)} occurrence(s)")
    Log.kv({
        "stage": "expand",
        "result": "success",
        "pattern": data.recurring_pattern,
        "anchor": anchor.isoformat(),
        "until": end_day.isoformat(),
        "days": len(days),
        "times_per_day": len(times),
        "occurrences": len(occurrences),
        "dropped": dropped,
        "recurring_id": recurring_id,
    })
    return RecurringSchedule(occurrences, dropped)


def expand_recurring(candidate: NormalizedEvent) -> List[NormalizedEvent]:
    """Occurrences of a recurring reminder, without the overflow count."""
    return plan_recurring(candidate).occurrences
