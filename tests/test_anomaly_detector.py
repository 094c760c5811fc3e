from datetime import date

from factories import at, mk_event
from symptomcal.anomaly_detector import (
    CHEST_PAIN_RECOMMENDATION,
    DEFAULT_CLEAR_RECOMMENDATION,
    SymptomAnalyzer,
    detect_abnormal_ranges,
)
from symptomcal.event_models import AbnormalRange, EventType
from symptomcal.text_llm_client import StubTextLLMClient


def test_high_severity_day_is_flagged():
    events = [mk_event("e1", "Migraine", start=at(2025, 1, 5), severity=9)]
    ranges = detect_abnormal_ranges(events)
    assert len(ranges) == 1
    assert ranges[0].start == ranges[0].end == date(2025, 1, 5)
    assert "9/10" in ranges[0].reason


def test_mild_isolated_event_is_not_flagged():
    events = [mk_event("e1", "Headache", start=at(2025, 1, 5), severity=3, location="head")]
    assert detect_abnormal_ranges(events) == []


def test_chest_pain_is_flagged_regardless_of_severity():
    events = [mk_event("e1", "Chest pain", start=at(2025, 1, 8), severity=2)]
    ranges = detect_abnormal_ranges(events)
    assert [r.reason.startswith("Chest pain") for r in ranges] == [True]
    assert ranges[0].covers(date(2025, 1, 8))


def test_same_location_within_a_week():
    events = [
        mk_event("e1", "Knee ache", start=at(2025, 1, 1), severity=2, location="Knee"),
        mk_event("e2", "Knee ache", start=at(2025, 1, 6), severity=2, location="knee"),
        mk_event("e3", "Knee ache", start=at(2025, 1, 30), severity=2, location="knee"),
    ]
    ranges = detect_abnormal_ranges(events)
    assert ranges == [AbnormalRange(date(2025, 1, 1), date(2025, 1, 6), ranges[0].reason)]
    assert "knee" in ranges[0].reason


def test_cluster_of_three_in_three_days():
    events = [
        mk_event("e1", "Nausea", EventType.SYMPTOM, at(2025, 2, 1)),
        mk_event("e2", "Fatigue", EventType.SYMPTOM, at(2025, 2, 2)),
        mk_event("e3", "Dizziness", EventType.SYMPTOM, at(2025, 2, 3)),
    ]
    ranges = detect_abnormal_ranges(events)
    assert len(ranges) == 1
    assert (ranges[0].start, ranges[0].end) == (date(2025, 2, 1), date(2025, 2, 3))
    assert ranges[0].reason.startswith("Cluster of 3")


def test_spread_out_events_do_not_cluster():
    events = [
        mk_event("e1", "Nausea", EventType.SYMPTOM, at(2025, 2, 1)),
        mk_event("e2", "Fatigue", EventType.SYMPTOM, at(2025, 2, 4)),
        mk_event("e3", "Dizziness", EventType.SYMPTOM, at(2025, 2, 7)),
    ]
    assert detect_abnormal_ranges(events) == []


def test_rising_severity_is_flagged():
    events = [
        mk_event("e1", "Back pain", start=at(2025, 3, 1), severity=2),
        mk_event("e2", "Back pain", start=at(2025, 3, 5), severity=4),
        mk_event("e3", "Back pain", start=at(2025, 3, 10), severity=6),
    ]
    ranges = detect_abnormal_ranges(events)
    assert len(ranges) == 1
    assert ranges[0].reason == "Progressively worsening severity (2 -> 4 -> 6)"
    assert (ranges[0].start, ranges[0].end) == (date(2025, 3, 1), date(2025, 3, 10))


def test_other_event_types_are_ignored():
    events = [
        mk_event("e1", "Cardiology", EventType.MEDICAL_APPOINTMENT, at(2025, 1, 1)),
        mk_event("e2", "Chest check", EventType.EVENT, at(2025, 1, 1)),
    ]
    assert detect_abnormal_ranges(events) == []


def test_detection_is_deterministic():
    events = [
        mk_event("e1", "Headache", start=at(2025, 1, 1), severity=8, location="head"),
        mk_event("e2", "Headache", start=at(2025, 1, 2), severity=5, location="head"),
        mk_event("e3", "Chest pain", start=at(2025, 1, 2, 18)),
        mk_event("e4", "Nausea", EventType.SYMPTOM, at(2025, 1, 3)),
    ]
    first = detect_abnormal_ranges(events)
    second = detect_abnormal_ranges(list(reversed(events)))
    assert first == second
    assert first == sorted(first)
    assert len(set(first)) == len(first)


def test_analyzer_caches_until_invalidated():
    llm = StubTextLLMClient([
        '{"recommendation": "Rest and hydrate."}',
        '{"recommendation": "See a doctor this week."}',
    ])
    analyzer = SymptomAnalyzer(llm)
    events = [mk_event("e1", "Migraine", start=at(2025, 1, 5), severity=9)]

    first = analyzer.analyze(events)
    assert first.recommendation == "Rest and hydrate."
    assert first.is_abnormal_day(date(2025, 1, 5))
    assert analyzer.analyze([]) is first
    assert len(llm.prompts) == 1

    analyzer.invalidate()
    assert not analyzer.has_analyzed
    second = analyzer.analyze(events)
    assert second.recommendation == "See a doctor this week."
    assert "1 period(s)" in second.message


def test_analyzer_falls_back_when_model_reply_is_unusable():
    analyzer = SymptomAnalyzer(StubTextLLMClient(["I cannot help with that."]))
    result = analyzer.analyze([mk_event("e1", "Chest pain", start=at(2025, 1, 8))])
    assert result.recommendation == CHEST_PAIN_RECOMMENDATION


def test_analyzer_without_symptoms_returns_none():
    analyzer = SymptomAnalyzer()
    assert analyzer.analyze([mk_event("e1", "Checkup", EventType.MEDICAL_APPOINTMENT)]) is None
    assert not analyzer.has_analyzed


def test_clear_message_when_nothing_flagged():
    analyzer = SymptomAnalyzer()
    result = analyzer.analyze([mk_event("e1", "Headache", severity=2)])
    assert result.ranges == []
    assert result.recommendation == DEFAULT_CLEAR_RECOMMENDATION
    assert result.message.startswith("Symptom Analysis: No concerning patterns")
