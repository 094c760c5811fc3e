from datetime import date

from factories import at, mk_event
from symptomcal.calendar_connector import InMemoryCalendarStore
from symptomcal.calendar_state import CalendarState
from symptomcal.event_models import EventType

NOW = at(2025, 1, 10, 12, 0)


def seeded(session, *events):
    state = CalendarState(InMemoryCalendarStore(events), session)
    state.refresh()
    return state


def test_refresh_loads_only_own_events(session):
    state = seeded(session, mk_event("a", "Mine"), mk_event("b", "Theirs", user_id="u2"))
    assert [e.id for e in state.events()] == ["a"]


def test_apply_change_merges_by_id(state):
    notified = []
    state.add_listener(lambda: notified.append(len(state)))

    state.apply_change("create", mk_event("x", "Headache"))
    state.apply_change("update", mk_event("x", "Headache (worse)"))
    state.apply_change("create", mk_event("y", "Nausea", EventType.SYMPTOM))
    state.apply_change("delete", "x")
    state.apply_change("rename", "y")

    assert [e.title for e in state.events()] == ["Nausea"]
    assert notified == [1, 1, 2, 1]


def test_realtime_pushes_from_store_reach_state(state, store, session):
    state.start_realtime()
    created = store.create(session, mk_event("", "Headache"))
    assert state.get(created.id) is not None

    state.stop_realtime()
    store.create(session, mk_event("", "Back pain"))
    assert len(state) == 1


def test_add_and_delete_event(state):
    created = state.add_event(mk_event("", "Headache"))
    assert state.get(created.id).title == "Headache"
    assert state.delete_event(created.id)
    assert state.get(created.id) is None


def test_delete_of_foreign_event_fails(session):
    state = seeded(session, mk_event("b", "Theirs", user_id="u2"))
    assert not state.delete_event("b")
    assert state.error == "Failed to delete event"


def test_move_event_updates_store(state, store, session):
    created = state.add_event(mk_event("", "Headache", start=at(2025, 1, 1, 9)))
    moved = state.move_event(created.id, at(2025, 1, 2, 10), at(2025, 1, 2, 11))
    assert moved.start == at(2025, 1, 2, 10)
    assert store.list_for_user(session)[0].end == at(2025, 1, 2, 11)


def test_failed_move_refetches_server_copy(state, store):
    created = state.add_event(mk_event("", "Headache", start=at(2025, 1, 1, 9)))
    store.failing_titles.add("Headache")

    assert state.move_event(created.id, at(2025, 1, 3, 9), at(2025, 1, 3, 10)) is None
    assert state.get(created.id).start == at(2025, 1, 1, 9)
    assert state.error == "Failed to update event"


def test_move_rejects_inverted_times(state):
    created = state.add_event(mk_event("", "Headache", start=at(2025, 1, 1, 9)))
    assert state.move_event(created.id, at(2025, 1, 1, 10), at(2025, 1, 1, 9)) is None
    assert state.get(created.id).start == at(2025, 1, 1, 9)


def test_mark_medication_taken(state):
    created = state.add_event(mk_event(
        "", "Take ibuprofen", EventType.MEDICATION_REMINDER, at(2025, 1, 10, 8), medication="Ibuprofen", taken=False,
    ))

    updated = state.mark_medication_taken(created.id, True, now=NOW)
    assert updated.event_data["taken"] is True
    assert updated.event_data["takenAt"] == NOW.isoformat()

    reverted = state.mark_medication_taken(created.id, False)
    assert reverted.event_data["taken"] is False
    assert "takenAt" not in reverted.event_data


def test_mark_taken_ignores_other_types(state):
    created = state.add_event(mk_event("", "Headache"))
    assert state.mark_medication_taken(created.id) is None


def test_medication_adherence(state):
    def dose(day, hour, taken):
        return mk_event(
            "", "Take ibuprofen", EventType.MEDICATION_REMINDER, at(2025, 1, day, hour),
            medication="Ibuprofen", recurringId="Ibuprofen-1", taken=taken,
        )

    for event in (dose(1, 8, True), dose(8, 8, True), dose(9, 8, False), dose(10, 8, True), dose(10, 20, False)):
        state.add_event(event)

    adherence = state.medication_adherence(NOW)["Ibuprofen-1"]
    assert adherence.as_dict() == {
        "name": "Ibuprofen",
        "total": 4,
        "taken": 2,
        "missed": 1,
        "upcoming_today": 1,
    }


def test_health_context_windows(state):
    state.add_event(mk_event("", "Old", start=at(2024, 12, 1)))
    state.add_event(mk_event("", "Last week", start=at(2025, 1, 3), severity=3))
    state.add_event(mk_event("", "Yesterday", start=at(2025, 1, 9), severity=5, location="head"))
    state.add_event(mk_event("", "Soon", EventType.MEDICAL_APPOINTMENT, at(2025, 1, 13, 15)))

    context = state.health_context(NOW)

    assert [e["title"] for e in context["recentEvents"]] == ["Last week", "Yesterday", "Soon"]
    assert [e["title"] for e in context["nearbyEvents"]] == ["Yesterday", "Soon"]
    assert context["nearbyEvents"][0]["severity"] == 5
    assert context["nearbyEvents"][0]["location"] == "head"
    assert context["currentDate"] == "2025-01-10"
    assert context["currentTime"] == "12:00"


def test_wipe_all(state):
    state.add_event(mk_event("", "Headache"))
    state.add_event(mk_event("", "Nausea", EventType.SYMPTOM))
    assert state.wipe_all() == 2
    assert state.events() == []


def test_events_on(state):
    state.add_event(mk_event("", "Headache", start=at(2025, 1, 1, 23, 0)))
    state.add_event(mk_event("", "Nausea", start=at(2025, 1, 2, 0, 30)))
    assert [e.title for e in state.events_on(date(2025, 1, 2))] == ["Nausea"]
