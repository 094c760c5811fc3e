"""
Health chat assistant.

Sends the user's message plus calendar context to the text model, shows the
reply, and hands any suggested events to the reconciler. Also posts symptom
analysis results and advisory output from the symptom classifiers.
"""

import itertools
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import tzlocal

from symptomcal.anomaly_detector import AnalysisResult, SymptomAnalyzer
from symptomcal.calendar_state import CalendarState
from symptomcal.errors import AuthRequiredError
from symptomcal.event_models import EventType
from symptomcal.health_models import MIN_SYMPTOMS_FOR_MODELS, HealthModelClient
from symptomcal.logging_helper import Log
from symptomcal.reconciler import UNPROCESSABLE_MESSAGE, Reconciler
from symptomcal.text_llm_client import EVENT_SUGGESTION_MARKER, TextLLMClient, split_event_suggestion

GREETING = (
    "Hi! I'm your health assistant. I can help you analyze your symptoms, track patterns, "
    "and provide health recommendations. How can I assist you today?"
)
CONNECTION_ERROR_REPLY = "I'm sorry, I'm having trouble connecting right now. Please try again in a moment."
LOGIN_REQUIRED_REPLY = "Please log in so I can add events to your calendar."

MESSAGE_TYPES = ("text", "analysis", "recommendations", "appointment")

_ids = itertools.count(1)


@dataclass
class ChatMessage:
    content: str
    is_user: bool
    type: str = "text"
    timestamp: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=lambda: str(next(_ids)))


def classify_reply(text: str) -> str:
    lowered = text.lower()
    if "pattern" in lowered or "analysis" in lowered:
        return "analysis"
    if "recommend" in lowered or "suggest" in lowered:
        return "recommendations"
    if "appointment" in lowered or "doctor" in lowered:
        return "appointment"
    return "text"


def _local_zone_name() -> str:
    try:
        return tzlocal.get_localzone_name() or "UTC"
    except Exception as e:
        Log.warn(f"Failed to determine system IANA timezone: {e}")
        return "UTC"


SUGGESTION_SCHEMA = {
    "title": "Brief title for the event",
    "type": "pain|symptom|medication-reminder|medical-appointment|event",
    "description": "Brief description",
    "date": "YYYY-MM-DD (default to today if not specified)",
    "time": "HH:MM (default to current time if not specified)",
    "duration": 30,
    "eventData": {
        "severity": 5,
        "painLevel": "mild|moderate|severe",
        "location": "specific body part",
        "medication": "medication name",
        "dosage": "amount",
        "frequency": "how often",
        "doctorName": "doctor name",
        "appointmentType": "type of appointment",
        "notes": "additional relevant information",
    },
}


def build_chat_prompt(user_message: str, context: Dict[str, Any], zone_name: str) -> str:
    prompt = (
        "You are a helpful health assistant focused on symptom tracking and health management.\n\n"
        "Current context:\n"
        f"- Today's date: {context['currentDate']}\n"
        f"- Current time: {context['currentTime']}\n"
        f"- User timezone: {zone_name}\n\n"
        f'User message: "{user_message}"\n\n'
        "Guidelines:\n"
        "- Provide helpful, supportive responses about health and symptom tracking\n"
        "- If discussing symptoms, suggest tracking patterns and potential triggers\n"
        "- Recommend consulting healthcare providers for serious concerns\n"
        "- Keep responses concise but informative\n"
        "- Use a caring, professional tone\n"
        "- Do not provide specific medical diagnoses\n\n"
        "EVENT SUGGESTIONS:\n"
        "Only suggest an event when the user reports a specific current or past symptom, pain or "
        "medication intake, or a specific future appointment. Do not suggest events for general "
        "questions or routine discussion. When the user mentions a time period (yesterday, this "
        "morning, tomorrow at 2pm), convert it to a concrete date and time.\n\n"
        "To suggest events, end your response with this marker followed by one JSON object, or a "
        "JSON array of objects for several events:\n\n"
        f"{EVENT_SUGGESTION_MARKER}\n{json.dumps(SUGGESTION_SCHEMA, indent=2)}\n"
    )

    if context.get("nearbyEvents"):
        prompt += (
            "\nEvents around current time period (3 days before/after today):\n"
            f"{json.dumps(context['nearbyEvents'], indent=2, default=str)}\n"
        )
    if context.get("recentEvents"):
        prompt += (
            "\nRecent events (last 2 weeks):\n"
            f"{json.dumps(context['recentEvents'], indent=2, default=str)}\n"
        )
    prompt += "\nAvoid suggesting events that are already logged above for the same day."
    return prompt


class ChatAssistant:
    """
    Chat session bound to one user's calendar state.
    """

    def __init__(
        self,
        llm_client: TextLLMClient,
        state: CalendarState,
        analyzer: Optional[SymptomAnalyzer] = None,
        health_models: Optional[HealthModelClient] = None,
        min_symptoms_for_models: int = MIN_SYMPTOMS_FOR_MODELS,
        profile: tuple = (None, ""),
    ):
        self.llm_client = llm_client
        self.state = state
        self.analyzer = analyzer or SymptomAnalyzer(llm_client)
        self.reconciler = Reconciler(state, on_events_added=self.analyzer.invalidate)
        self.health_models = health_models
        self.min_symptoms_for_models = min_symptoms_for_models
        self.profile = profile
        self.messages: List[ChatMessage] = [ChatMessage(GREETING, is_user=False)]
        self.error: Optional[str] = None
        self._last_model_symptoms: Optional[tuple] = None
        state.add_listener(self.analyzer.invalidate)

    # -- history -----------------------------------------------------------

    def post_analysis(self, content: str, message_type: str = "analysis") -> ChatMessage:
        """Append an assistant-side status or analysis message."""
        message = ChatMessage(content, is_user=False, type=message_type)
        self.messages.append(message)
        return message

    def clear_chat(self):
        self.messages = [ChatMessage(GREETING, is_user=False)]
        self.error = None

    def clear_analysis_messages(self):
        self.messages = [m for m in self.messages if m.type != "analysis"]

    # -- conversation ------------------------------------------------------

    def send_message(self, user_message: str, now: Optional[datetime] = None) -> Optional[ChatMessage]:
        """
        Send one user message and process the reply.

        Returns:
            The assistant reply message, or None for an empty message
        """
        if not user_message or not user_message.strip():
            return None

        Log.section("Chat Assistant")
        self.messages.append(ChatMessage(user_message, is_user=True))
        self.error = None

        prompt = build_chat_prompt(user_message, self.state.health_context(now), _local_zone_name())
        try:
            raw_reply = self.llm_client.generate(prompt)
        except Exception as e:
            Log.error(f"Error sending message to model: {e}")
            Log.kv({"stage": "chat", "result": "failed", "error": str(e)})
            self.error = "Sorry, I encountered an error. Please try again."
            reply = ChatMessage(CONNECTION_ERROR_REPLY, is_user=False)
            self.messages.append(reply)
            return reply

        reply_text, suggestion = split_event_suggestion(raw_reply)
        reply = ChatMessage(reply_text, is_user=False, type=classify_reply(reply_text))
        self.messages.append(reply)
        Log.kv({"stage": "chat", "result": "success", "type": reply.type, "suggestion": suggestion is not None})

        if suggestion is not None:
            self.handle_suggestion(suggestion, now=now)

        self.check_symptom_models(now=now)
        return reply

    def handle_suggestion(self, suggestion: Any, now: Optional[datetime] = None) -> ChatMessage:
        """Reconcile suggested events and post the status message."""
        try:
            result = self.reconciler.reconcile(suggestion, now=now)
        except AuthRequiredError:
            Log.warn("Suggestion received without an authenticated user")
            return self.post_analysis(LOGIN_REQUIRED_REPLY)
        except Exception as e:
            Log.error(f"Failed to process AI-suggested events: {e}")
            return self.post_analysis(UNPROCESSABLE_MESSAGE)
        return self.post_analysis(result.status_message())

    # -- analysis ----------------------------------------------------------

    def run_analysis(self) -> Optional[AnalysisResult]:
        """Analyze the current events and post the result, replacing older analysis messages."""
        if self.analyzer.has_analyzed:
            return self.analyzer.result
        try:
            result = self.analyzer.analyze(self.state.events())
        except Exception as e:
            Log.error(f"Error analyzing symptom patterns: {e}")
            return None
        if result is None:
            return None
        self.clear_analysis_messages()
        self.post_analysis(result.message)
        return result

    # -- symptom classifiers -----------------------------------------------

    def current_symptoms(self, now: Optional[datetime] = None) -> List[str]:
        """Distinct pain/symptom titles around today, in first-seen order."""
        symptoms: List[str] = []
        for event in self.state.health_context(now)["nearbyEvents"]:
            if event["type"] not in (EventType.PAIN.value, EventType.SYMPTOM.value):
                continue
            name = event["title"].strip().lower()
            if name and name not in symptoms:
                symptoms.append(name)
        return symptoms

    def check_symptom_models(self, now: Optional[datetime] = None) -> List[ChatMessage]:
        """Run the classifiers once enough distinct symptoms are logged; post their advisory text."""
        if self.health_models is None:
            return []
        symptoms = self.current_symptoms(now)
        if len(symptoms) < self.min_symptoms_for_models:
            return []
        if self._last_model_symptoms == tuple(symptoms):
            return []
        self._last_model_symptoms = tuple(symptoms)

        posted = []
        physical = self.health_models.predict_physical(symptoms)
        if physical.success and physical.data:
            posted.append(self.post_analysis(f"Physical symptom model: {physical.data}", "recommendations"))

        age, gender = self.profile
        if age is None:
            Log.info("Skipping mental model: no age in user profile")
        else:
            mental = self.health_models.predict_mental(symptoms, age, gender)
            if mental.success and mental.data:
                posted.append(self.post_analysis(f"Mental health model: {mental.data}", "recommendations"))
        return posted
