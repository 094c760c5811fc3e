from factories import at, mk_event
from symptomcal.dedup import find_duplicate, title_key
from symptomcal.event_models import EventType
from symptomcal.event_normalizer import normalize

NOW = at(2025, 1, 1, 15, 0)


def candidate(**fields):
    return normalize(fields, now=NOW).candidate


def test_same_day_same_type_title_overlap_is_duplicate():
    existing = [mk_event("e1", "Headache", EventType.PAIN, at(2025, 1, 1, 9, 0))]
    check = find_duplicate(candidate(title="Headache right now", type="pain", date="2025-01-01"), existing)
    assert check.is_duplicate
    assert check.matched.id == "e1"


def test_different_type_is_not_duplicate():
    existing = [mk_event("e1", "Headache", EventType.PAIN, at(2025, 1, 1, 9, 0))]
    check = find_duplicate(candidate(title="Headache right now", type="symptom", date="2025-01-01"), existing)
    assert not check.is_duplicate
    assert check.matched is None


def test_different_day_is_not_duplicate():
    existing = [mk_event("e1", "Headache", EventType.PAIN, at(2024, 12, 31, 23, 0))]
    check = find_duplicate(candidate(title="Headache", type="pain", date="2025-01-01"), existing)
    assert not check.is_duplicate


def test_match_is_case_insensitive_substring():
    existing = [mk_event("e1", "Severe MIGRAINE attack", EventType.PAIN, at(2025, 1, 1, 7, 0))]
    check = find_duplicate(candidate(title="migraine", type="pain", date="2025-01-01"), existing)
    assert check.is_duplicate


def test_first_word_only_is_compared():
    existing = [mk_event("e1", "Back pain", EventType.PAIN, at(2025, 1, 1, 7, 0))]
    check = find_duplicate(candidate(title="Lower back pain", type="pain", date="2025-01-01"), existing)
    assert not check.is_duplicate


def test_title_key():
    assert title_key("  Headache right now") == "headache"
    assert title_key("") == ""
