import pytest

from factories import at, mk_event
from symptomcal.calendar_connector import InMemoryCalendarStore
from symptomcal.calendar_state import CalendarState
from symptomcal.errors import AuthRequiredError
from symptomcal.event_models import EventType
from symptomcal.reconciler import NOTHING_ADDED_MESSAGE, ReconcileResult, Reconciler
from symptomcal.recurrence import MAX_OCCURRENCES
from symptomcal.session import Session

NOW = at(2025, 1, 1, 15, 0)


def headache(**overrides):
    suggestion = {
        "title": "Headache",
        "type": "pain",
        "date": "2025-01-01",
        "time": "15:00",
        "duration": 30,
        "eventData": {"severity": 6, "location": "head"},
    }
    suggestion.update(overrides)
    return suggestion


def test_single_suggestion_is_persisted(state):
    added = []
    result = Reconciler(state, on_events_added=lambda: added.append(True)).reconcile(headache(), now=NOW)

    assert result.success_count == 1
    assert result.status_message() == '✅ I\'ve added "Headache" for 2025-01-01 at 15:00 to your calendar.'
    [event] = state.events()
    assert event.type == EventType.PAIN
    assert event.user_id == "u1"
    assert event.event_data["severity"] == 6
    assert added == [True]


def test_items_fail_independently(state):
    batch = [
        headache(),
        {"title": "", "type": "symptom"},
        {"title": "Nausea", "type": "symptom", "date": "2025-01-01", "time": "16:00"},
    ]
    result = Reconciler(state).reconcile(batch, now=NOW)

    assert (result.success_count, result.failure_count, result.duplicate_count) == (2, 1, 0)
    assert [e.title for e in state.events()] == ["Headache", "Nausea"]
    message = result.status_message()
    assert message.startswith("✅ I've added 2 events to your calendar:\n• \"Headache\"")
    assert message.endswith('❌ Failed to add "Untitled event". You can add these manually using the + button.')


def test_duplicate_is_skipped_with_warning(session):
    store = InMemoryCalendarStore([mk_event("e1", "Headache", start=at(2025, 1, 1, 9))])
    state = CalendarState(store, session)
    state.refresh()

    result = Reconciler(state).reconcile(headache(title="Headache again"), now=NOW)

    assert result.success_count == 0
    assert result.duplicate_count == 1
    assert result.status_message() == '⚠️ Similar pain event ("Headache") already exists for 2025-01-01'
    assert len(store.list_for_user(session)) == 1


def test_duplicates_within_one_batch_are_caught(state):
    result = Reconciler(state).reconcile([headache(), headache(time="18:00")], now=NOW)
    assert (result.success_count, result.duplicate_count) == (1, 1)


def test_explicit_snapshot_is_used_for_dedup(state):
    existing = [mk_event("e1", "Headache", start=at(2025, 1, 1, 9))]
    result = Reconciler(state).reconcile(headache(), existing=existing, now=NOW)
    assert result.duplicate_count == 1
    assert state.events() == []


def test_store_failure_is_reported_and_batch_continues(state, store):
    store.failing_titles.add("Headache")
    result = Reconciler(state).reconcile([headache(), headache(title="Dizziness", type="symptom")], now=NOW)
    assert result.failed == ["Headache"]
    assert result.success_count == 1


def test_cancelled_create_is_not_a_failure(state, store):
    store.cancelled_titles.add("Headache")
    result = Reconciler(state).reconcile(headache(), now=NOW)
    assert result.cancelled == 1
    assert result.failure_count == 0
    assert result.status_message() == NOTHING_ADDED_MESSAGE


def test_recurring_medication_is_expanded(state):
    suggestion = {
        "title": "Take ibuprofen",
        "type": "medication-reminder",
        "date": "2025-01-01",
        "time": "08:00",
        "eventData": {
            "medication": "Ibuprofen",
            "dosage": "200mg",
            "isRecurring": True,
            "recurringPattern": "daily",
            "recurringTimes": ["08:00", "20:00"],
            "recurringEndDate": "2025-01-03",
        },
    }
    result = Reconciler(state).reconcile(suggestion, now=NOW)

    events = state.events()
    assert len(events) == 6
    assert len({e.event_data["recurringId"] for e in events}) == 1
    assert result.added == ['"Take ibuprofen" (6 reminders from 2025-01-01 at 08:00, 20:00)']
    assert len(result.added_events) == 6


def test_capped_recurring_schedule_reports_dropped_reminders(state):
    suggestion = {
        "title": "Take antibiotic",
        "type": "medication-reminder",
        "date": "2025-01-01",
        "time": "06:00",
        "eventData": {
            "medication": "Amoxicillin",
            "isRecurring": True,
            "recurringPattern": "daily",
            "recurringTimes": ["06:00", "09:00", "12:00", "15:00", "18:00", "21:00"],
        },
    }
    result = Reconciler(state).reconcile(suggestion, now=NOW)

    assert len(state.events()) == MAX_OCCURRENCES
    assert result.skipped == [
        '⚠️ Only the first 500 reminders for "Take antibiotic" were scheduled; 46 later reminder(s) were not added'
    ]
    assert "46 later reminder(s) were not added" in result.status_message()


def test_recurring_without_occurrences_fails(state):
    suggestion = {
        "title": "Take vitamin D",
        "type": "medication-reminder",
        "eventData": {"isRecurring": True, "recurringPattern": "weekly", "recurringDays": []},
    }
    result = Reconciler(state).reconcile(suggestion, now=NOW)
    assert result.failed == ["Take vitamin D"]
    assert state.events() == []


def test_unauthenticated_batch_writes_nothing(store):
    state = CalendarState(store, Session())
    with pytest.raises(AuthRequiredError):
        Reconciler(state).reconcile(headache(), now=NOW)
    assert store.list_for_user(Session(user_id="u1")) == []


def test_empty_batch_message():
    assert ReconcileResult().status_message() == NOTHING_ADDED_MESSAGE
