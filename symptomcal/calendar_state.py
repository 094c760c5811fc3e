"""
Local, authoritative copy of the user's calendar events.

Direct user actions, realtime pushes and reconciliation results all merge
into one set keyed by event id (last writer wins per id). Writers always work
on the latest snapshot under the lock, never on a copy taken before an await
or network call.
"""

import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from dateutil import tz as dateutil_tz

from symptomcal.calendar_connector import CalendarStore
from symptomcal.errors import PersistenceError, RequestCancelledError
from symptomcal.event_models import CalendarEvent, EventType, local_day
from symptomcal.logging_helper import Log
from symptomcal.session import Session

RECENT_WINDOW_DAYS = 14
NEARBY_WINDOW_DAYS = 3
ADHERENCE_WINDOW_DAYS = 7


def _aware(moment: Optional[datetime]) -> datetime:
    system_tz = dateutil_tz.tzlocal()
    if moment is None:
        return datetime.now(system_tz)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=system_tz)
    return moment


class MedicationAdherence:
    def __init__(self, name: str):
        self.name = name
        self.total = 0
        self.taken = 0
        self.missed = 0
        self.upcoming_today = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "total": self.total,
            "taken": self.taken,
            "missed": self.missed,
            "upcoming_today": self.upcoming_today,
        }


class CalendarState:
    """
    In-memory event set for one session, kept in sync with the store.
    """

    def __init__(self, store: CalendarStore, session: Session):
        self.store = store
        self.session = session
        self._events: Dict[str, CalendarEvent] = {}
        self._lock = threading.RLock()
        self._listeners: List[Callable[[], None]] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.error: Optional[str] = None

    # -- listeners ---------------------------------------------------------

    def add_listener(self, callback: Callable[[], None]):
        """Called after every change to the event set."""
        self._listeners.append(callback)

    def _changed(self):
        for callback in list(self._listeners):
            callback()

    # -- reads -------------------------------------------------------------

    def events(self) -> List[CalendarEvent]:
        with self._lock:
            return sorted(self._events.values(), key=lambda e: (e.start, e.id))

    def get(self, event_id: str) -> Optional[CalendarEvent]:
        with self._lock:
            return self._events.get(event_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    # -- sync --------------------------------------------------------------

    def refresh(self) -> List[CalendarEvent]:
        """Replace the local set with the store's copy."""
        events = self.store.list_for_user(self.session)
        with self._lock:
            self._events = {e.id: e for e in events}
        Log.kv({"stage": "state", "action": "refresh", "count": len(events)})
        self._changed()
        return self.events()

    def _refresh_after_failure(self):
        try:
            self.refresh()
        except PersistenceError as e:
            Log.error(f"Failed to refresh events after error: {e}")

    def apply_change(self, action: str, payload: Any):
        """Merge one create/update/delete push into the local set by id."""
        with self._lock:
            if action in ("create", "update"):
                self._events[payload.id] = payload
            elif action == "delete":
                self._events.pop(str(payload), None)
            else:
                Log.warn(f"Ignoring unknown change action: {action}")
                return
        self._changed()

    def start_realtime(self):
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self.session, self.apply_change)

    def stop_realtime(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # -- writes ------------------------------------------------------------

    def add_event(self, event: CalendarEvent) -> CalendarEvent:
        created = self.store.create(self.session, event)
        self.apply_change("create", created)
        return created

    def update_event(self, event_id: str, patch: Dict[str, Any]) -> Optional[CalendarEvent]:
        try:
            updated = self.store.update(self.session, event_id, patch)
        except RequestCancelledError:
            Log.warn(f"Update of {event_id} was cancelled")
            return None
        except PersistenceError as e:
            Log.error(f"Failed to update event {event_id}: {e}")
            self.error = "Failed to update event"
            self._refresh_after_failure()
            return None
        self.apply_change("update", updated)
        return updated

    def move_event(self, event_id: str, start: datetime, end: datetime) -> Optional[CalendarEvent]:
        """Drag/resize: update locally first, then persist; re-fetch everything if that fails."""
        with self._lock:
            current = self._events.get(event_id)
            if current is None:
                Log.warn(f"Cannot move unknown event {event_id}")
                return None
            if end < start:
                Log.warn(f"Rejecting move of {event_id}: end before start")
                return None
            self._events[event_id] = current.copy_with(start=start, end=end)
        self._changed()
        return self.update_event(event_id, {"start": start, "end": end})

    def delete_event(self, event_id: str) -> bool:
        try:
            self.store.delete(self.session, event_id)
        except RequestCancelledError:
            Log.warn(f"Delete of {event_id} was cancelled")
            return False
        except PersistenceError as e:
            Log.error(f"Failed to delete event {event_id}: {e}")
            self.error = "Failed to delete event"
            return False
        self.apply_change("delete", event_id)
        return True

    def mark_medication_taken(self, event_id: str, taken: bool = True, now: Optional[datetime] = None) -> Optional[CalendarEvent]:
        event = self.get(event_id)
        if event is None:
            return None
        if event.type != EventType.MEDICATION_REMINDER:
            Log.warn(f"Event {event_id} is not a medication reminder")
            return None
        event_data = dict(event.event_data)
        event_data["taken"] = taken
        if taken:
            event_data["takenAt"] = _aware(now).isoformat()
        else:
            event_data.pop("takenAt", None)
        updated = self.update_event(event_id, {"event_data": event_data})
        if updated is None:
            self.error = "Failed to update medication status"
        return updated

    def wipe_all(self) -> int:
        """Delete every event the user owns; returns how many were removed."""
        removed = 0
        for event in self.events():
            if self.delete_event(event.id):
                removed += 1
        Log.kv({"stage": "state", "action": "wipe", "removed": removed})
        return removed

    # -- derived views -----------------------------------------------------

    def medication_adherence(self, now: Optional[datetime] = None) -> Dict[str, MedicationAdherence]:
        """Medication reminders of the last week grouped by schedule."""
        now = _aware(now)
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        since = today - timedelta(days=ADHERENCE_WINDOW_DAYS)
        tomorrow = today + timedelta(days=1)

        groups: Dict[str, MedicationAdherence] = {}
        for event in self.events():
            if event.type != EventType.MEDICATION_REMINDER or event.start < since:
                continue
            name = event.event_data.get("medication") or event.title
            key = event.event_data.get("recurringId") or name
            group = groups.setdefault(key, MedicationAdherence(name))
            group.total += 1
            if event.end < now:
                if event.is_medication_taken():
                    group.taken += 1
                else:
                    group.missed += 1
            elif today <= event.start < tomorrow:
                group.upcoming_today += 1
        return groups

    def health_context(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Recent (two weeks) and nearby (three days either side) events for chat prompts."""
        now = _aware(now)
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        recent_since = now - timedelta(days=RECENT_WINDOW_DAYS)
        nearby_from = today - timedelta(days=NEARBY_WINDOW_DAYS)
        nearby_to = today + timedelta(days=NEARBY_WINDOW_DAYS + 1)

        events = self.events()
        return {
            "recentEvents": [e.to_context_dict() for e in events if e.start >= recent_since],
            "nearbyEvents": [e.to_context_dict(detailed=True) for e in events if nearby_from <= e.start < nearby_to],
            "currentDate": now.strftime("%Y-%m-%d"),
            "currentTime": now.strftime("%H:%M"),
        }

    def events_on(self, day) -> List[CalendarEvent]:
        return [e for e in self.events() if local_day(e.start) == day]
