from datetime import datetime

from factories import LOCAL, at
from symptomcal.event_models import EventType, SuggestedEvent
from symptomcal.event_normalizer import local_now, normalize, parse_date, parse_time

NOW = at(2025, 1, 1, 10, 15)


def test_normalize_full_suggestion():
    result = normalize({
        "title": "Headache",
        "type": "pain",
        "description": "Throbbing",
        "date": "2025-01-03",
        "time": "14:30",
        "duration": 45,
        "eventData": {"severity": 6, "painLevel": "Moderate", "location": "head"},
    }, now=NOW)

    assert result.ok
    candidate = result.candidate
    assert candidate.event_type == EventType.PAIN
    assert candidate.start_time == at(2025, 1, 3, 14, 30)
    assert candidate.duration_minutes() == 45
    assert candidate.event_data == {"severity": 6, "painLevel": "moderate", "location": "head"}
    assert result.warnings == []


def test_missing_title_is_an_error():
    result = normalize({"title": "   ", "type": "pain"}, now=NOW)
    assert not result.ok
    assert result.candidate is None
    assert str(result.errors[0]) == "missing title"


def test_unknown_type_defaults_to_symptom():
    result = normalize({"title": "Tired", "type": "exercise"}, now=NOW)
    assert result.ok
    assert result.candidate.event_type == EventType.SYMPTOM
    assert any("exercise" in w for w in result.warnings)


def test_missing_date_and_time_default_to_now():
    result = normalize(SuggestedEvent(title="Nausea"), now=NOW)
    assert result.candidate.start_time == NOW
    assert result.candidate.time_str == "10:15"
    assert result.candidate.date_str == "2025-01-01"


def test_unparsable_fields_degrade_to_defaults():
    result = normalize({
        "title": "Back pain",
        "type": "pain",
        "date": "next tuesday",
        "time": "25:99",
        "duration": -5,
    }, now=NOW)

    assert result.ok
    assert result.candidate.start_time == NOW
    assert result.candidate.duration_minutes() == 30
    assert len(result.warnings) == 3


def test_end_never_before_start():
    for duration in (None, 0, -10, "abc", 1, 600):
        result = normalize({"title": "Dizzy", "duration": duration}, now=NOW)
        assert result.candidate.end_time >= result.candidate.start_time


def test_time_never_missing_after_validation():
    result = normalize({"title": "Cough", "time": None})
    assert result.candidate.time_str
    assert result.candidate.start_time.second == 0


def test_severity_is_clamped():
    result = normalize({"title": "Migraine", "type": "pain", "eventData": {"severity": 14}}, now=NOW)
    assert result.candidate.event_data["severity"] == 10


def test_non_object_suggestion_fails():
    result = normalize(["not", "an", "object"], now=NOW)
    assert not result.ok


def test_parse_helpers():
    assert parse_date("2025-02-28").isoformat() == "2025-02-28"
    assert parse_date("2025-02-30") is None
    assert parse_date("02/28/2025") is None
    assert parse_time("7:05") == (7, 5)
    assert parse_time("24:00") is None


def test_local_now_attaches_timezone():
    naive = datetime(2025, 1, 1, 8, 30, 45, 123)
    assert local_now(naive) == datetime(2025, 1, 1, 8, 30, tzinfo=LOCAL)
