"""
Calendar Connector for reading and writing the user's calendar events.
Supports the PocketBase backend (REST records API + realtime SSE stream) and
an in-memory store for offline use and tests.

Every call is scoped to the session's user: reads filter by owner, and
update/delete check ownership before touching a record.
"""

import itertools
import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

import requests

from symptomcal.errors import (
    PersistenceError,
    RequestCancelledError,
    UnauthorizedEventError,
)
from symptomcal.event_models import (
    CalendarEvent,
    EventType,
    format_record_datetime,
    event_to_record_data,
    record_to_event,
)
from symptomcal.logging_helper import Log
from symptomcal.session import Session

COLLECTION = "calendar_data"
PAGE_SIZE = 200

# (action, event or deleted id)
ChangeCallback = Callable[[str, Any], None]
PATCH_FIELDS = ("title", "type", "description", "start", "end", "all_day", "event_data")


class CalendarStore(ABC):
    """Persistence collaborator for calendar events."""

    @abstractmethod
    def list_for_user(self, session: Session) -> List[CalendarEvent]:
        pass

    @abstractmethod
    def create(self, session: Session, event: CalendarEvent) -> CalendarEvent:
        pass

    @abstractmethod
    def update(self, session: Session, event_id: str, patch: Dict[str, Any]) -> CalendarEvent:
        pass

    @abstractmethod
    def delete(self, session: Session, event_id: str) -> None:
        pass

    @abstractmethod
    def subscribe(self, session: Session, on_change: ChangeCallback) -> Callable[[], None]:
        """Register for create/update/delete pushes; returns an unsubscribe function."""
        pass


def patch_to_record_data(patch: Dict[str, Any]) -> Dict[str, Any]:
    """Translate a CalendarEvent field patch into record fields (only keys present)."""
    unknown = set(patch) - set(PATCH_FIELDS)
    if unknown:
        raise ValueError(f"Unknown event fields in patch: {sorted(unknown)}")
    data: Dict[str, Any] = {}
    if "title" in patch:
        data["title"] = patch["title"]
    if "type" in patch:
        data["event_type"] = EventType.parse(patch["type"]).value
    if "description" in patch:
        data["description"] = patch["description"] or ""
    if "start" in patch:
        data["start_date"] = format_record_datetime(patch["start"])
    if "end" in patch:
        data["end_date"] = format_record_datetime(patch["end"])
    if "all_day" in patch:
        data["all_day"] = bool(patch["all_day"])
    if "event_data" in patch:
        data["event_data"] = patch["event_data"] or {}
    return data


def convert_record(record: Dict[str, Any]) -> Optional[CalendarEvent]:
    """Stored record as an event, or None (with a warning) when it cannot be read."""
    try:
        return record_to_event(record)
    except (KeyError, TypeError, ValueError) as e:
        Log.warn(f"Skipping unreadable calendar record {record.get('id', '?')}: {e!r}")
        return None


def _check_patch_times(current: CalendarEvent, patch: Dict[str, Any]):
    start = patch.get("start", current.start)
    end = patch.get("end", current.end)
    if end < start:
        raise PersistenceError(f"Event '{current.title}' would end before it starts", status=400)


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

class InMemoryCalendarStore(CalendarStore):
    """
    Store that keeps records in memory.
    Used offline and in tests; failures can be injected by title.
    """

    def __init__(self, events: Optional[Iterable[CalendarEvent]] = None):
        self._records: Dict[str, CalendarEvent] = {}
        self._subscribers: List[Tuple[str, ChangeCallback]] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self.failing_titles = set()
        self.cancelled_titles = set()
        for event in events or []:
            self._records[event.id] = event

    def _next_id(self) -> str:
        return f"evt{next(self._ids):06d}"

    def _notify(self, owner: str, action: str, payload: Any):
        for user_id, callback in list(self._subscribers):
            if user_id == owner:
                callback(action, payload)

    def _owned(self, session: Session, event_id: str) -> CalendarEvent:
        user_id = session.require_user_id()
        record = self._records.get(event_id)
        if record is None:
            raise PersistenceError(f"Event {event_id} not found", status=404)
        if record.user_id != user_id:
            raise UnauthorizedEventError(event_id)
        return record

    def list_for_user(self, session: Session) -> List[CalendarEvent]:
        user_id = session.require_user_id()
        with self._lock:
            events = [e for e in self._records.values() if e.user_id == user_id]
        return sorted(events, key=lambda e: e.start)

    def create(self, session: Session, event: CalendarEvent) -> CalendarEvent:
        user_id = session.require_user_id()
        if event.title in self.cancelled_titles:
            raise RequestCancelledError()
        if event.title in self.failing_titles:
            raise PersistenceError(f"Failed to create calendar event '{event.title}'", status=500)
        with self._lock:
            created = event.copy_with(id=self._next_id(), user_id=user_id, event_data=dict(event.event_data))
            self._records[created.id] = created
        Log.kv({"stage": "store", "backend": "memory", "action": "create", "id": created.id})
        self._notify(user_id, "create", created)
        return created

    def update(self, session: Session, event_id: str, patch: Dict[str, Any]) -> CalendarEvent:
        with self._lock:
            current = self._owned(session, event_id)
            if current.title in self.failing_titles:
                raise PersistenceError(f"Failed to update calendar event '{current.title}'", status=500)
            _check_patch_times(current, patch)
            patch_to_record_data(patch)
            changes = dict(patch)
            if "type" in changes:
                changes["type"] = EventType.parse(changes["type"])
            updated = current.copy_with(**changes)
            self._records[event_id] = updated
        Log.kv({"stage": "store", "backend": "memory", "action": "update", "id": event_id})
        self._notify(updated.user_id, "update", updated)
        return updated

    def delete(self, session: Session, event_id: str) -> None:
        with self._lock:
            current = self._owned(session, event_id)
            del self._records[event_id]
        Log.kv({"stage": "store", "backend": "memory", "action": "delete", "id": event_id})
        self._notify(current.user_id, "delete", event_id)

    def subscribe(self, session: Session, on_change: ChangeCallback) -> Callable[[], None]:
        entry = (session.require_user_id(), on_change)
        self._subscribers.append(entry)

        def unsubscribe():
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe


# ---------------------------------------------------------------------------
# PocketBase store
# ---------------------------------------------------------------------------

def iter_sse_events(lines: Iterable[str]) -> Iterator[Tuple[str, str]]:
    """
    Parse a server-sent-events line stream into (event name, data) pairs.
    """
    event_name = "message"
    data_lines: List[str] = []
    for line in lines:
        if line is None:
            continue
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        if line == "":
            if data_lines:
                yield event_name, "\n".join(data_lines)
            event_name = "message"
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event_name = value
        elif field == "data":
            data_lines.append(value)
    if data_lines:
        yield event_name, "\n".join(data_lines)


class PocketBaseCalendarStore(CalendarStore):
    """
    Calendar store backed by the PocketBase "calendar_data" collection.
    """

    def __init__(self, base_url: str, http=None, timeout: float = 15.0):
        self.base_url = base_url.rstrip("/")
        self.http = http or requests.Session()
        self.timeout = timeout
        self._closed = threading.Event()

    @property
    def records_url(self) -> str:
        return f"{self.base_url}/api/collections/{COLLECTION}/records"

    def close(self):
        """Tear down: calls still in flight or made afterwards report cancellation."""
        self._closed.set()

    def _request(self, method: str, url: str, session: Session, **kwargs):
        if self._closed.is_set():
            raise RequestCancelledError()
        headers = dict(kwargs.pop("headers", {}) or {})
        headers.update(session.auth_headers())
        try:
            response = self.http.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            if self._closed.is_set():
                raise RequestCancelledError() from e
            Log.error(f"PocketBase {method} {url} failed: {e}")
            raise PersistenceError(f"Calendar backend unreachable: {e}") from e

        if response.status_code >= 400:
            try:
                detail = response.json().get("message", "")
            except ValueError:
                detail = response.text[:200]
            Log.error(f"PocketBase {method} {url} returned {response.status_code}: {detail}")
            Log.kv({"stage": "store", "backend": "pocketbase", "method": method, "status": response.status_code})
            raise PersistenceError(detail or f"Calendar backend error {response.status_code}", status=response.status_code)
        return response

    def _get_owned_record(self, session: Session, event_id: str) -> Dict[str, Any]:
        user_id = session.require_user_id()
        record = self._request("GET", f"{self.records_url}/{event_id}", session).json()
        if record.get("user_id") != user_id:
            raise UnauthorizedEventError(event_id)
        return record

    def list_for_user(self, session: Session) -> List[CalendarEvent]:
        user_id = session.require_user_id()
        events: List[CalendarEvent] = []
        page = 1
        try:
            while True:
                body = self._request(
                    "GET",
                    self.records_url,
                    session,
                    params={
                        "filter": f'user_id = "{user_id}"',
                        "sort": "start_date",
                        "page": page,
                        "perPage": PAGE_SIZE,
                    },
                ).json()
                converted = (convert_record(r) for r in body.get("items", []))
                events.extend(event for event in converted if event is not None)
                if page >= int(body.get("totalPages", 1) or 1):
                    break
                page += 1
        except RequestCancelledError:
            Log.warn("Event fetch was cancelled - returning no events")
            return []

        Log.kv({"stage": "store", "backend": "pocketbase", "action": "list", "count": len(events)})
        return events

    def create(self, session: Session, event: CalendarEvent) -> CalendarEvent:
        user_id = session.require_user_id()
        record = self._request(
            "POST", self.records_url, session, json=event_to_record_data(event, user_id)
        ).json()
        created = record_to_event(record)
        Log.kv({"stage": "store", "backend": "pocketbase", "action": "create", "id": created.id})
        return created

    def update(self, session: Session, event_id: str, patch: Dict[str, Any]) -> CalendarEvent:
        current = record_to_event(self._get_owned_record(session, event_id))
        _check_patch_times(current, patch)
        record = self._request(
            "PATCH", f"{self.records_url}/{event_id}", session, json=patch_to_record_data(patch)
        ).json()
        Log.kv({"stage": "store", "backend": "pocketbase", "action": "update", "id": event_id})
        return record_to_event(record)

    def delete(self, session: Session, event_id: str) -> None:
        self._get_owned_record(session, event_id)
        self._request("DELETE", f"{self.records_url}/{event_id}", session)
        Log.kv({"stage": "store", "backend": "pocketbase", "action": "delete", "id": event_id})

    def subscribe(self, session: Session, on_change: ChangeCallback) -> Callable[[], None]:
        user_id = session.require_user_id()
        listener = _RealtimeListener(self, session, user_id, on_change)
        listener.start()
        return listener.stop


class _RealtimeListener:
    """Reads the PocketBase SSE stream on a daemon thread and forwards this user's changes."""

    def __init__(self, store: PocketBaseCalendarStore, session: Session, user_id: str, on_change: ChangeCallback):
        self.store = store
        self.session = session
        self.user_id = user_id
        self.on_change = on_change
        self._stop = threading.Event()
        self._response = None
        self._thread = threading.Thread(target=self._run, name="symptomcal-realtime", daemon=True)

    def start(self):
        Log.info("Starting realtime subscription")
        self._thread.start()

    def stop(self):
        Log.info("Stopping realtime subscription")
        self._stop.set()
        if self._response is not None:
            self._response.close()

    def _run(self):
        url = f"{self.store.base_url}/api/realtime"
        try:
            self._response = self.store.http.get(
                url,
                headers={"Accept": "text/event-stream"},
                stream=True,
                timeout=(self.store.timeout, None),
            )
            for event_name, data in iter_sse_events(self._response.iter_lines(decode_unicode=True)):
                if self._stop.is_set():
                    break
                self.handle(event_name, data)
        except (requests.exceptions.RequestException, PersistenceError) as e:
            if not self._stop.is_set():
                Log.error(f"Realtime stream failed: {e}")
                Log.kv({"stage": "realtime", "result": "failed", "error": str(e)})

    def handle(self, event_name: str, data: str):
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            payload = None
        if not isinstance(payload, dict):
            Log.warn(f"Ignoring malformed realtime payload for {event_name}")
            return

        if event_name == "PB_CONNECT":
            self.store._request(
                "POST",
                f"{self.store.base_url}/api/realtime",
                self.session,
                json={"clientId": payload.get("clientId"), "subscriptions": [f"{COLLECTION}/*"]},
            )
            Log.kv({"stage": "realtime", "result": "connected", "client_id": payload.get("clientId")})
            return

        record = payload.get("record") or {}
        action = payload.get("action")
        if not isinstance(record, dict) or record.get("user_id") != self.user_id:
            return
        if action in ("create", "update"):
            event = convert_record(record)
            if event is None:
                return
            self.on_change(action, event)
        elif action == "delete":
            self.on_change("delete", str(record.get("id")))
        Log.kv({"stage": "realtime", "action": action, "id": record.get("id"), "at": datetime.now().isoformat()})
