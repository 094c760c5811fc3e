"""
Reconciliation of AI event suggestions with the user's calendar.

One batch (a single suggestion or a list from one chat turn) goes through
validate -> dedup -> expand (recurring medication) -> persist, item by item
in the given order. Items fail independently; the batch always finishes with
a status message for the chat.
"""

from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional, Union

from symptomcal.calendar_state import CalendarState
from symptomcal.dedup import find_duplicate
from symptomcal.errors import RequestCancelledError
from symptomcal.event_models import CalendarEvent, SuggestedEvent
from symptomcal.event_normalizer import NormalizedEvent, normalize
from symptomcal.logging_helper import Log
from symptomcal.recurrence import MAX_OCCURRENCES, is_recurring, plan_recurring

Suggestion = Union[SuggestedEvent, dict]

MANUAL_HINT = "You can add these manually using the + button."
NOTHING_ADDED_MESSAGE = "❌ No events could be added. You can add them manually using the + button."
UNPROCESSABLE_MESSAGE = "❌ I wasn't able to process the suggested events. You can add them manually using the + button."


def _raw_title(raw: Any) -> str:
    title = None
    if isinstance(raw, dict):
        title = raw.get("title")
    elif isinstance(raw, SuggestedEvent):
        title = raw.title
    if isinstance(title, str) and title.strip():
        return title.strip()
    return "Untitled event"


class ReconcileResult:
    """Outcome buckets of one suggestion batch."""

    def __init__(self):
        self.added: List[str] = []
        self.skipped: List[str] = []
        self.failed: List[str] = []
        self.added_events: List[CalendarEvent] = []
        self.cancelled = 0

    @property
    def success_count(self) -> int:
        return len(self.added)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def duplicate_count(self) -> int:
        return len(self.skipped)

    def status_message(self) -> str:
        sections = []
        if self.added:
            if len(self.added) == 1:
                sections.append(f"✅ I've added {self.added[0]} to your calendar.")
            else:
                lines = "\n".join(f"• {entry}" for entry in self.added)
                sections.append(f"✅ I've added {len(self.added)} events to your calendar:\n{lines}")
        if self.skipped:
            sections.append("\n".join(self.skipped))
        if self.failed:
            failures = ", ".join(f'Failed to add "{title}"' for title in self.failed)
            sections.append(f"❌ {failures}. {MANUAL_HINT}")
        if not sections:
            return NOTHING_ADDED_MESSAGE
        return "\n\n".join(sections)


class Reconciler:
    """
    Turns suggestions into persisted events through the calendar state.
    """

    def __init__(self, state: CalendarState, on_events_added: Optional[Callable[[], None]] = None):
        self.state = state
        self.on_events_added = on_events_added

    def reconcile(
        self,
        suggestions: Union[Suggestion, List[Suggestion]],
        existing: Optional[Iterable[CalendarEvent]] = None,
        now: Optional[datetime] = None
    ) -> ReconcileResult:
        """
        Validate, dedup, expand and persist a batch of suggestions.

        Args:
            suggestions: one suggestion or a list of them, processed in order
            existing: events to dedup against (latest local snapshot when omitted)
            now: reference time for validator defaults

        Returns:
            ReconcileResult with added / skipped / failed buckets

        Raises:
            AuthRequiredError: when the session has no user; nothing is written
        """
        self.state.session.require_user_id()

        items = suggestions if isinstance(suggestions, list) else [suggestions]
        known: List[Any] = list(existing) if existing is not None else self.state.events()
        result = ReconcileResult()

        Log.section("Reconciler")
        Log.info(f"Reconciling {len(items)} suggested event(s) against {len(known)} existing")
        Log.kv({"stage": "reconcile", "state": "RECEIVED", "items": len(items)})

        for index, raw in enumerate(items, start=1):
            title = _raw_title(raw)
            Log.kv({"stage": "reconcile", "state": "VALIDATING", "item": index, "title": title})
            try:
                self._process_item(raw, title, known, result, now)
            except Exception as e:
                Log.error(f"Failed to process suggestion '{title}': {e}")
                Log.kv({"stage": "reconcile", "item": index, "result": "failed", "error": str(e)})
                result.failed.append(title)

        if result.added_events and self.on_events_added is not None:
            self.on_events_added()

        Log.kv({
            "stage": "reconcile",
            "state": "SUMMARIZED",
            "added": result.success_count,
            "skipped": result.duplicate_count,
            "failed": result.failure_count,
            "cancelled": result.cancelled,
        })
        return result

    def _process_item(self, raw: Any, title: str, known: List[Any], result: ReconcileResult, now: Optional[datetime]):
        validation = normalize(raw, now=now)
        if not validation.ok:
            reasons = ", ".join(str(e) for e in validation.errors)
            Log.warn(f"Suggestion '{title}' rejected: {reasons}")
            result.failed.append(title)
            return

        candidate = validation.candidate
        if not is_recurring(candidate):
            self._persist_single(candidate, known, result)
            return

        schedule = plan_recurring(candidate)
        if not schedule.occurrences:
            result.failed.append(candidate.title)
            return
        self._persist_recurring(candidate, schedule.occurrences, known, result)
        if schedule.dropped:
            result.skipped.append(
                f'⚠️ Only the first {MAX_OCCURRENCES} reminders for "{candidate.title}" were scheduled; '
                f"{schedule.dropped} later reminder(s) were not added"
            )

    def _persist_single(self, candidate: NormalizedEvent, known: List[Any], result: ReconcileResult):
        duplicate = find_duplicate(candidate, known)
        if duplicate.is_duplicate:
            result.skipped.append(
                f'⚠️ Similar {candidate.event_type.value} event ("{duplicate.matched.title}") '
                f"already exists for {candidate.date_str}"
            )
            return

        Log.kv({"stage": "reconcile", "state": "PERSIST", "title": candidate.title})
        try:
            created = self.state.add_event(candidate.to_calendar_event())
        except RequestCancelledError:
            Log.warn(f"Creating '{candidate.title}' was cancelled")
            result.cancelled += 1
            return

        known.append(created)
        result.added_events.append(created)
        result.added.append(f'"{candidate.title}" for {candidate.date_str} at {candidate.time_str}')

    def _persist_recurring(
        self,
        candidate: NormalizedEvent,
        occurrences: List[NormalizedEvent],
        known: List[Any],
        result: ReconcileResult
    ):
        created_count = 0
        duplicates = 0
        failures = 0
        # several doses a day share a title, so only events from before this schedule count
        baseline = list(known)
        for occurrence in occurrences:
            if find_duplicate(occurrence, baseline).is_duplicate:
                duplicates += 1
                continue
            try:
                created = self.state.add_event(occurrence.to_calendar_event())
            except RequestCancelledError:
                result.cancelled += 1
                continue
            except Exception as e:
                Log.error(f"Failed to create recurring event on {occurrence.date_str}: {e}")
                failures += 1
                continue
            known.append(created)
            result.added_events.append(created)
            created_count += 1

        Log.info(
            f"Recurring '{candidate.title}': {created_count} created, "
            f"{duplicates} duplicate(s), {failures} failed"
        )
        if created_count:
            times = sorted({occ.time_str for occ in occurrences})
            result.added.append(
                f'"{candidate.title}" ({created_count} reminders from {occurrences[0].date_str} at {", ".join(times)})'
            )
        if duplicates:
            result.skipped.append(
                f'⚠️ {duplicates} reminder(s) for "{candidate.title}" already exist and were skipped'
            )
        if failures:
            result.failed.append(f"{candidate.title} ({failures} reminders)")
