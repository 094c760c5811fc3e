import pytest

from symptomcal.calendar_connector import InMemoryCalendarStore
from symptomcal.calendar_state import CalendarState
from symptomcal.session import Session


@pytest.fixture
def session():
    return Session(user_id="u1", token="tok")


@pytest.fixture
def store():
    return InMemoryCalendarStore()


@pytest.fixture
def state(store, session):
    return CalendarState(store, session)


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("SYMPTOMCAL_SETTINGS_DIR", str(tmp_path / "settings"))
    monkeypatch.delenv("POCKETBASE_URL", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("SYMPTOMCAL_HOOK_URL", raising=False)
