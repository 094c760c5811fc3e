"""
Main entry point for SymptomCal.
`chat` runs the terminal health assistant, `serve` runs the classifier hooks.
"""

import argparse
import os

from symptomcal.anomaly_detector import SymptomAnalyzer
from symptomcal.calendar_connector import InMemoryCalendarStore, PocketBaseCalendarStore
from symptomcal.calendar_state import CalendarState
from symptomcal.chat_assistant import ChatAssistant
from symptomcal.health_models import HealthModelClient
from symptomcal.logging_helper import Log
from symptomcal.session import PocketBaseAuth, Session
from symptomcal.settings_manager import (
    get_hook_server_url,
    get_min_symptoms_for_models,
    get_pocketbase_url,
    get_user_profile,
)
from symptomcal.text_llm_client import DEFAULT_ANALYSIS_MODEL, get_llm_client

NO_SYMPTOMS_TO_ANALYZE = "No symptom events to analyze yet."


def build_assistant() -> ChatAssistant:
    """Wire session, store, state and assistant together."""
    base_url = get_pocketbase_url()
    email = os.getenv("SYMPTOMCAL_EMAIL")
    password = os.getenv("SYMPTOMCAL_PASSWORD")

    if email and password:
        outcome = PocketBaseAuth(base_url).login(email, password)
        if not outcome.success:
            raise SystemExit(f"Login failed: {outcome.error}")
        session = outcome.session
        store = PocketBaseCalendarStore(base_url)
        health_models = HealthModelClient(get_hook_server_url())
    else:
        Log.warn("No credentials in environment - using offline in-memory calendar")
        session = Session.local()
        store = InMemoryCalendarStore()
        health_models = None

    state = CalendarState(store, session)
    state.refresh()
    analyzer = SymptomAnalyzer(get_llm_client(os.getenv("GEMINI_ANALYSIS_MODEL", DEFAULT_ANALYSIS_MODEL)))
    return ChatAssistant(
        get_llm_client(),
        state,
        analyzer=analyzer,
        health_models=health_models,
        min_symptoms_for_models=get_min_symptoms_for_models(),
        profile=get_user_profile(),
    )


def run_chat():
    assistant = build_assistant()
    assistant.state.start_realtime()
    print(assistant.messages[0].content)
    try:
        while True:
            try:
                text = input("> ").strip()
            except EOFError:
                break
            if text in ("/quit", "/exit"):
                break
            if text == "/analyze":
                result = assistant.run_analysis()
                print(result.message if result is not None else NO_SYMPTOMS_TO_ANALYZE)
            elif text == "/events":
                for event in assistant.state.events():
                    print(f"  {event.start:%Y-%m-%d %H:%M}  [{event.type.value}] {event.title}")
            else:
                before = len(assistant.messages)
                assistant.send_message(text)
                for message in assistant.messages[before + 1:]:
                    print(message.content)
    finally:
        assistant.state.stop_realtime()


def run_server(host: str, port: int):
    import uvicorn

    uvicorn.run("symptomcal.hook_server:app", host=host, port=port)


def main():
    """Main entry point for the app."""
    parser = argparse.ArgumentParser(prog="symptomcal")
    subcommands = parser.add_subparsers(dest="command")
    subcommands.add_parser("chat", help="Run the terminal health assistant")
    serve = subcommands.add_parser("serve", help="Run the symptom model hook server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8005)
    args = parser.parse_args()

    Log.section("SymptomCal")
    Log.info(f"Log file: {Log.get_log_path()}")

    if args.command == "serve":
        run_server(args.host, args.port)
    else:
        run_chat()


if __name__ == "__main__":
    main()
