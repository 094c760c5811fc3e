"""
Text LLM Client interface for the health chat assistant.
Supports StubTextLLMClient (offline) and GeminiTextLLMClient (real provider),
plus helpers that pull structured payloads out of free-text model replies.
"""

import json
import os
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional, Tuple

import requests

from symptomcal.errors import GenerationError, GenerationParseError
from symptomcal.logging_helper import Log

EVENT_SUGGESTION_MARKER = "EVENT_SUGGESTION:"
DEFAULT_CHAT_MODEL = "gemini-2.0-flash"
DEFAULT_ANALYSIS_MODEL = "gemini-2.5-flash-lite"
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*|\s*```", re.IGNORECASE)


class TextLLMClient(ABC):
    """Abstract base class for text generation clients."""

    @abstractmethod
    def generate(self, prompt: str) -> str:
        """
        Generate a reply for the prompt.

        Args:
            prompt: full prompt text

        Returns:
            Model reply text

        Raises:
            GenerationError: if the provider call fails or returns nothing
        """
        pass


class StubTextLLMClient(TextLLMClient):
    """
    Stub LLM client for offline use and tests.
    Replays scripted replies in order, or returns a canned reply that carries
    one event suggestion in the same format the real model is asked for.
    """

    def __init__(self, replies: Optional[List[str]] = None):
        self.replies = list(replies) if replies else []
        self.prompts: List[str] = []

    def generate(self, prompt: str) -> str:
        Log.section("Stub LLM Client")
        Log.info("Using stub LLM client (offline mode)")
        self.prompts.append(prompt)

        if self.replies:
            reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
            Log.kv({"stage": "llm", "provider": "stub", "result": "scripted", "chars": len(reply)})
            return reply

        if '"recommendation"' in prompt:
            reply = json.dumps({
                "recommendation": "Keep tracking your symptoms and share these patterns with your healthcare provider."
            })
        else:
            now = datetime.now()
            reply = (
                "I'm sorry you're not feeling well. I'll log this so you can track any patterns.\n\n"
                + EVENT_SUGGESTION_MARKER + "\n"
                + json.dumps({
                    "title": "Headache",
                    "type": "pain",
                    "description": "Headache reported in chat",
                    "date": now.strftime("%Y-%m-%d"),
                    "time": now.strftime("%H:%M"),
                    "duration": 30,
                    "eventData": {"severity": 5, "painLevel": "moderate", "location": "head"},
                }, indent=2)
            )
        Log.kv({"stage": "llm", "provider": "stub", "result": "success", "chars": len(reply)})
        return reply


class StubTextLLMClient_NoEvent(TextLLMClient):
    """
    Stub LLM client that never proposes an event.
    Useful for tests & simulation of plain conversational replies.
    """

    def generate(self, prompt: str) -> str:
        Log.section("Stub LLM Client - No Event")
        Log.info("Using stub LLM client (offline mode - no event)")
        Log.kv({"stage": "llm", "provider": "stub_noevent", "result": "no_event"})
        return "Thanks for sharing. Keep tracking how you feel and talk to your doctor if anything worsens."


class GeminiTextLLMClient(TextLLMClient):
    """
    Google Gemini REST client for chat replies and analysis phrasing.
    """

    def __init__(self, api_key: str, model: str = DEFAULT_CHAT_MODEL, timeout: float = 30.0):
        """
        Initialize Gemini client.

        Args:
            api_key: Gemini API key from environment
            model: model name, e.g. gemini-2.0-flash
        """
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.api_url = f"{GEMINI_API_BASE}/{model}:generateContent"

    def generate(self, prompt: str) -> str:
        Log.section("Gemini LLM Client")
        Log.info(f"Using Gemini API ({self.model})")

        payload = {
            "contents": [
                {"role": "user", "parts": [{"text": prompt}]}
            ],
            "generationConfig": {
                "temperature": 0.4,
                "maxOutputTokens": 1024,
            },
        }

        Log.kv({
            "stage": "llm",
            "provider": "gemini",
            "model": self.model,
            "status": "requesting",
            "prompt_chars": len(prompt),
        })

        try:
            response = requests.post(
                self.api_url,
                params={"key": self.api_key},
                headers={"Content-Type": "application/json"},
                json=payload,
                timeout=self.timeout,
            )
            Log.info(f"API response status: {response.status_code}")

            if response.status_code != 200:
                try:
                    Log.error(f"Gemini API error: {response.json()}")
                except ValueError:
                    Log.error(f"Gemini API error (non-JSON): {response.text[:500]}")

            response.raise_for_status()
            result = response.json()
        except requests.exceptions.RequestException as e:
            Log.error(f"Gemini API request failed: {e}")
            Log.kv({"stage": "llm", "provider": "gemini", "result": "failed", "reason": "api_error", "error": str(e)})
            raise GenerationError(f"Gemini request failed: {e}") from e
        except ValueError as e:
            Log.error(f"Gemini API returned non-JSON body: {e}")
            Log.kv({"stage": "llm", "provider": "gemini", "result": "failed", "reason": "bad_body"})
            raise GenerationError("Gemini returned a malformed response") from e

        candidates = result.get("candidates") or []
        parts = (candidates[0].get("content") or {}).get("parts", []) if candidates else []
        content = "".join(part.get("text", "") for part in parts).strip()

        if not content:
            Log.warn("Empty response from Gemini")
            Log.kv({"stage": "llm", "provider": "gemini", "result": "failed", "reason": "empty_response"})
            raise GenerationError("Gemini returned an empty response")

        Log.kv({"stage": "llm", "provider": "gemini", "result": "success", "chars": len(content)})
        return content


def _strip_code_fences(text: str) -> str:
    return _CODE_FENCE_RE.sub("", text).strip()


def extract_json_payload(text: str) -> Any:
    """
    Parse the JSON value embedded in a model reply.

    Tolerates markdown code fences and leading/trailing prose.

    Raises:
        GenerationParseError: if no JSON object or array can be decoded
    """
    cleaned = _strip_code_fences(text or "")
    if not cleaned:
        raise GenerationParseError("empty payload")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    decoder = json.JSONDecoder()
    for index, char in enumerate(cleaned):
        if char not in "{[":
            continue
        try:
            value, _ = decoder.raw_decode(cleaned[index:])
            return value
        except json.JSONDecodeError:
            continue
    raise GenerationParseError(f"could not parse JSON from: {cleaned[:100]}")


def split_event_suggestion(text: str) -> Tuple[str, Optional[Any]]:
    """
    Split a chat reply into the user-facing text and the suggested event payload.

    Returns:
        (reply text, dict or list of dicts) - the payload is None when the reply
        carries no suggestion or the suggestion could not be parsed
    """
    if EVENT_SUGGESTION_MARKER not in text:
        return text.strip(), None

    reply_text, suggestion_text = text.split(EVENT_SUGGESTION_MARKER, 1)
    reply_text = reply_text.strip()

    try:
        payload = extract_json_payload(suggestion_text)
    except GenerationParseError as e:
        Log.warn(f"Failed to parse event suggestion: {e}")
        Log.kv({"stage": "llm", "result": "failed", "reason": "suggestion_parse_error"})
        return reply_text, None

    if isinstance(payload, dict):
        return reply_text, payload
    if isinstance(payload, list) and payload and all(isinstance(item, dict) for item in payload):
        return reply_text, payload

    Log.warn(f"Event suggestion has unexpected shape: {type(payload).__name__}")
    Log.kv({"stage": "llm", "result": "failed", "reason": "suggestion_shape"})
    return reply_text, None


def get_llm_client(model: Optional[str] = None) -> TextLLMClient:
    """
    Factory function to get the appropriate LLM client.
    Defaults to StubTextLLMClient. Use GeminiTextLLMClient if API key available.

    Can be forced to use stub by setting USE_STUB environment variable.
    Can be forced to use no-event stub by setting USE_STUB_NOEVENT environment variable.

    Returns:
        TextLLMClient instance
    """
    if os.getenv("USE_STUB_NOEVENT"):
        Log.info("USE_STUB_NOEVENT flag set - using stub client (no event suggestions)")
        return StubTextLLMClient_NoEvent()

    if os.getenv("USE_STUB"):
        Log.info("USE_STUB flag set - using stub client")
        return StubTextLLMClient()

    api_key = os.getenv("GEMINI_API_KEY")
    if api_key and api_key != "your_gemini_api_key_here":
        model = model or os.getenv("GEMINI_MODEL", DEFAULT_CHAT_MODEL)
        Log.info(f"API key found - using Gemini client ({model})")
        return GeminiTextLLMClient(api_key, model=model)

    Log.info("No API key - using stub client")
    return StubTextLLMClient()
