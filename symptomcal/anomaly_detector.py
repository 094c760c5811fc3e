"""
Symptom pattern analysis.

Flags date ranges whose pain/symptom events look clinically noteworthy. Which
ranges count as abnormal is decided here, from fixed thresholds; the text
model is only asked to phrase a recommendation for ranges already chosen.
"""

import json
from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional

from symptomcal.errors import GenerationError
from symptomcal.event_models import AbnormalRange, CalendarEvent, EventType
from symptomcal.logging_helper import Log
from symptomcal.text_llm_client import TextLLMClient, extract_json_payload

HIGH_SEVERITY_THRESHOLD = 7
LOCATION_WINDOW_DAYS = 7
CLUSTER_WINDOW_DAYS = 3
CLUSTER_MIN_EVENTS = 3
WORSENING_MIN_EVENTS = 3

ANALYZED_TYPES = (EventType.PAIN, EventType.SYMPTOM)
_UNKNOWN_LOCATIONS = ("", "unknown", "n/a", "none")

DEFAULT_CONCERN_RECOMMENDATION = "Consider consulting with your healthcare provider about these patterns."
DEFAULT_CLEAR_RECOMMENDATION = "Keep up the good work tracking your health!"
CHEST_PAIN_RECOMMENDATION = (
    "Chest pain should be checked by a healthcare provider promptly, "
    "and seek emergency care if it is severe or comes with shortness of breath."
)


def _sort_key(event: CalendarEvent):
    return (event.start, event.id or "", event.title)


def symptom_events(events: Iterable[CalendarEvent]) -> List[CalendarEvent]:
    """Pain and symptom events in a stable chronological order."""
    return sorted((e for e in events if e.type in ANALYZED_TYPES), key=_sort_key)


def _is_chest_pain(event: CalendarEvent) -> bool:
    if event.type != EventType.PAIN:
        return False
    text = f"{event.title} {event.description or ''}".lower()
    return "chest" in text


def _severity_flags(events: List[CalendarEvent]) -> List[AbnormalRange]:
    ranges = []
    for event in events:
        severity = event.severity()
        if severity is not None and severity >= HIGH_SEVERITY_THRESHOLD:
            day = event.day()
            ranges.append(AbnormalRange(day, day, f"High severity {event.type.value}: {event.title} ({severity}/10)"))
    return ranges


def _chest_pain_flags(events: List[CalendarEvent]) -> List[AbnormalRange]:
    ranges = []
    for event in events:
        if _is_chest_pain(event):
            day = event.day()
            ranges.append(AbnormalRange(day, day, f"Chest pain reported: {event.title}"))
    return ranges


def _location_flags(events: List[CalendarEvent]) -> List[AbnormalRange]:
    by_location: Dict[str, List[CalendarEvent]] = defaultdict(list)
    for event in events:
        location = (event.location() or "").strip().lower()
        if location not in _UNKNOWN_LOCATIONS:
            by_location[location].append(event)

    ranges = []
    for location in sorted(by_location):
        chain: List[CalendarEvent] = []
        for event in by_location[location]:
            if chain and (event.day() - chain[-1].day()).days > LOCATION_WINDOW_DAYS:
                ranges.extend(_location_range(location, chain))
                chain = []
            chain.append(event)
        ranges.extend(_location_range(location, chain))
    return ranges


def _location_range(location: str, chain: List[CalendarEvent]) -> List[AbnormalRange]:
    if len(chain) < 2:
        return []
    return [AbnormalRange(
        chain[0].day(),
        chain[-1].day(),
        f"Recurring symptoms in the same location ({location}): {len(chain)} events",
    )]


def _cluster_flags(events: List[CalendarEvent]) -> List[AbnormalRange]:
    days = [event.day() for event in events]
    windows = []
    for i, first in enumerate(days):
        j = i
        while j + 1 < len(days) and (days[j + 1] - first).days < CLUSTER_WINDOW_DAYS:
            j += 1
        if j - i + 1 >= CLUSTER_MIN_EVENTS:
            windows.append((i, j))

    merged = []
    for i, j in windows:
        if merged and i <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], j))
        else:
            merged.append((i, j))

    return [
        AbnormalRange(days[i], days[j], f"Cluster of {j - i + 1} symptom/pain events within a short timeframe")
        for i, j in merged
    ]


def _worsening_flags(events: List[CalendarEvent]) -> List[AbnormalRange]:
    rated = [event for event in events if event.severity() is not None]
    ranges = []
    run = rated[:1]
    for event in rated[1:]:
        previous = run[-1]
        gap = (event.day() - previous.day()).days
        if event.severity() > previous.severity() and gap <= LOCATION_WINDOW_DAYS:
            run.append(event)
            continue
        ranges.extend(_worsening_range(run))
        run = [event]
    ranges.extend(_worsening_range(run))
    return ranges


def _worsening_range(run: List[CalendarEvent]) -> List[AbnormalRange]:
    if len(run) < WORSENING_MIN_EVENTS:
        return []
    trend = " -> ".join(str(event.severity()) for event in run)
    return [AbnormalRange(run[0].day(), run[-1].day(), f"Progressively worsening severity ({trend})")]


def detect_abnormal_ranges(events: Iterable[CalendarEvent]) -> List[AbnormalRange]:
    """
    Flag abnormal date ranges in the user's pain/symptom history.

    Rules: any severity >= 7, any chest pain, the same location recurring
    within a week, three or more events inside a three-day window, and three
    or more consecutive rising severities. Output depends only on the events.

    Args:
        events: the user's events (other types are ignored)

    Returns:
        Sorted, de-duplicated list of AbnormalRange
    """
    relevant = symptom_events(events)
    if not relevant:
        return []

    found = set()
    for rule in (_severity_flags, _chest_pain_flags, _location_flags, _cluster_flags, _worsening_flags):
        found.update(rule(relevant))
    return sorted(found)


def build_recommendation(ranges: List[AbnormalRange]) -> str:
    """Fallback recommendation used when no model phrasing is available."""
    if not ranges:
        return DEFAULT_CLEAR_RECOMMENDATION
    if any(r.reason.startswith("Chest pain") for r in ranges):
        return CHEST_PAIN_RECOMMENDATION
    return DEFAULT_CONCERN_RECOMMENDATION


def format_analysis_message(ranges: List[AbnormalRange], recommendation: Optional[str]) -> str:
    if ranges:
        return (
            f"⚠️ Symptom Analysis: I have identified {len(ranges)} period(s) with concerning symptom "
            f"patterns (highlighted in red on your calendar). "
            + (recommendation or DEFAULT_CONCERN_RECOMMENDATION)
        )
    return (
        "Symptom Analysis: No concerning patterns detected in your recent symptoms. "
        + (recommendation or DEFAULT_CLEAR_RECOMMENDATION)
    )


class AnalysisResult:
    def __init__(self, ranges: List[AbnormalRange], recommendation: str):
        self.ranges = ranges
        self.recommendation = recommendation

    @property
    def message(self) -> str:
        return format_analysis_message(self.ranges, self.recommendation)

    def is_abnormal_day(self, day: date) -> bool:
        return any(r.covers(day) for r in self.ranges)


class SymptomAnalyzer:
    """
    Runs the detector and caches its result until the event set changes.
    """

    def __init__(self, llm_client: Optional[TextLLMClient] = None):
        self.llm_client = llm_client
        self._result: Optional[AnalysisResult] = None

    @property
    def has_analyzed(self) -> bool:
        return self._result is not None

    @property
    def result(self) -> Optional[AnalysisResult]:
        return self._result

    def invalidate(self):
        """Drop the cached analysis so the next pass re-scans the events."""
        if self._result is not None:
            Log.info("Symptom analysis invalidated")
        self._result = None

    def analyze(self, events: Iterable[CalendarEvent]) -> Optional[AnalysisResult]:
        """
        Analyze the events, reusing the cached result if nothing changed since.

        Returns:
            AnalysisResult, or None when there are no pain/symptom events
        """
        if self._result is not None:
            return self._result

        Log.section("Symptom Analysis")
        relevant = symptom_events(events)
        if not relevant:
            Log.info("No pain/symptom events to analyze")
            Log.kv({"stage": "analysis", "result": "skipped", "reason": "no_symptom_events"})
            return None

        ranges = detect_abnormal_ranges(relevant)
        recommendation = self._phrase_recommendation(relevant, ranges)
        self._result = AnalysisResult(ranges, recommendation)

        Log.info(f"Flagged {len(ranges)} abnormal range(s) from {len(relevant)} event(s)")
        Log.kv({
            "stage": "analysis",
            "result": "success",
            "events": len(relevant),
            "ranges": len(ranges),
        })
        return self._result

    def _phrase_recommendation(self, events: List[CalendarEvent], ranges: List[AbnormalRange]) -> str:
        fallback = build_recommendation(ranges)
        if self.llm_client is None:
            return fallback

        prompt = build_recommendation_prompt(events, ranges)
        try:
            payload = extract_json_payload(self.llm_client.generate(prompt))
        except GenerationError as e:
            Log.warn(f"Recommendation phrasing failed, using default: {e}")
            Log.kv({"stage": "analysis", "llm": "failed", "error": str(e)})
            return fallback

        recommendation = payload.get("recommendation") if isinstance(payload, dict) else None
        if not isinstance(recommendation, str) or not recommendation.strip():
            Log.warn("Model reply had no recommendation, using default")
            return fallback
        return recommendation.strip()


def build_recommendation_prompt(events: List[CalendarEvent], ranges: List[AbnormalRange]) -> str:
    symptom_data = [
        {
            "date": event.day().isoformat(),
            "type": event.type.value,
            "title": event.title,
            "severity": event.severity() or "unknown",
            "location": event.location() or "unknown",
            "description": event.description or "No description",
        }
        for event in events
    ]
    flagged = [
        {"startDate": r.start.isoformat(), "endDate": r.end.isoformat(), "reason": r.reason}
        for r in ranges
    ]
    return (
        "You are a medical symptom analysis assistant. The periods below have already been "
        "flagged from the user's chronological symptom/pain log. Do not add or remove periods.\n\n"
        f"SYMPTOM DATA:\n{json.dumps(symptom_data, indent=2)}\n\n"
        f"FLAGGED PERIODS:\n{json.dumps(flagged, indent=2)}\n\n"
        "Write specific, actionable advice for these findings (max 2 sentences). "
        "Do not provide a diagnosis.\n\n"
        "REQUIRED OUTPUT FORMAT (JSON only, no markdown):\n"
        '{"recommendation": "..."}\n'
    )
