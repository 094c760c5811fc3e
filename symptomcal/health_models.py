"""
Client for the physical and mental symptom classifier hooks.
Results are advisory text for the chat and are never parsed further.
"""

import base64
import binascii
from typing import Any, Dict, List, Optional

import requests

from symptomcal.logging_helper import Log

MIN_SYMPTOMS_FOR_MODELS = 3


class ModelResponse:
    def __init__(self, success: bool, data: Optional[str] = None, error: Optional[str] = None):
        self.success = success
        self.data = data
        self.error = error

    def __repr__(self) -> str:
        return f"ModelResponse(success={self.success}, data={self.data!r}, error={self.error!r})"


def decode_result(result: Any) -> str:
    """Decode a base64 result into text; anything that is not clean base64 text is passed through."""
    if not isinstance(result, str):
        return "" if result is None else str(result)
    try:
        return base64.b64decode(result, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return result


class HealthModelClient:
    """Calls POST /physical-model/ and POST /mental-model/ on the hook server."""

    def __init__(self, base_url: str, http=None, timeout: float = 60.0):
        self.base_url = base_url.rstrip("/")
        self.http = http or requests
        self.timeout = timeout

    def _call(self, kind: str, body: Dict[str, Any]) -> ModelResponse:
        Log.section("Health Model Client")
        Log.info(f"Calling {kind} model with symptoms: {body.get('symptoms')}")
        try:
            response = self.http.post(f"{self.base_url}/{kind}-model/", json=body, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.RequestException as e:
            Log.error(f"{kind.capitalize()} model error: {e}")
            Log.kv({"stage": "health_model", "model": kind, "result": "failed", "error": str(e)})
            return ModelResponse(False, error=f"Failed to call {kind} model")
        except ValueError as e:
            Log.error(f"{kind.capitalize()} model returned non-JSON body: {e}")
            return ModelResponse(False, error=f"Failed to call {kind} model")

        data = decode_result(payload.get("result"))
        Log.kv({"stage": "health_model", "model": kind, "result": "success", "chars": len(data)})
        return ModelResponse(True, data=data)

    def predict_physical(self, symptoms: List[str]) -> ModelResponse:
        return self._call("physical", {"symptoms": list(symptoms)})

    def predict_mental(self, symptoms: List[str], age: Optional[int], gender: str) -> ModelResponse:
        return self._call("mental", {"symptoms": list(symptoms), "age": age, "gender": gender})
