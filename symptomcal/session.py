"""
Authenticated session context and the BaaS auth calls that produce it.

A Session is created once at startup and passed explicitly to everything
that needs the current user; there is no module-level auth singleton.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from symptomcal.errors import AuthRequiredError
from symptomcal.logging_helper import Log


@dataclass
class Session:
    user_id: Optional[str] = None
    token: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def local(cls, user_id: str = "local-user") -> "Session":
        """Offline session used with the in-memory store."""
        return cls(user_id=user_id, name="Local user")

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    def require_user_id(self) -> str:
        if not self.user_id:
            raise AuthRequiredError()
        return self.user_id

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": self.token} if self.token else {}

    def clear(self):
        self.user_id = None
        self.token = None
        self.email = None
        self.name = None


class AuthOutcome:
    def __init__(self, success: bool, error: Optional[str] = None, session: Optional[Session] = None):
        self.success = success
        self.error = error
        self.session = session


def _error_body(response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class PocketBaseAuth:
    """Password auth against the BaaS "users" collection."""

    def __init__(self, base_url: str, http=None, timeout: float = 15.0):
        self.base_url = base_url.rstrip("/")
        self.http = http or requests
        self.timeout = timeout

    def login(self, email: str, password: str) -> AuthOutcome:
        Log.section("Auth")
        Log.info(f"Logging in {email}")
        try:
            response = self.http.post(
                f"{self.base_url}/api/collections/users/auth-with-password",
                json={"identity": email, "password": password},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            Log.error(f"Login request failed: {e}")
            return AuthOutcome(False, "Login failed. Please try again.")

        if response.status_code != 200:
            body = _error_body(response)
            message = "Login failed. Please try again."
            if response.status_code == 400:
                message = "Invalid email or password."
            elif body.get("message"):
                message = body["message"]
            Log.warn(f"Login failed: status={response.status_code}")
            Log.kv({"stage": "auth", "action": "login", "result": "failed", "status": response.status_code})
            return AuthOutcome(False, message)

        body = response.json()
        record = body.get("record") or {}
        session = Session(
            user_id=record.get("id"),
            token=body.get("token"),
            email=record.get("email", email),
            name=record.get("name"),
        )
        Log.kv({"stage": "auth", "action": "login", "result": "success", "user_id": session.user_id})
        return AuthOutcome(True, session=session)

    def signup(self, email: str, password: str, password_confirm: str, name: Optional[str] = None) -> AuthOutcome:
        Log.section("Auth")
        Log.info(f"Creating account for {email}")
        data = {
            "email": email,
            "password": password,
            "passwordConfirm": password_confirm,
            "name": name or email.split("@")[0],
        }
        try:
            response = self.http.post(
                f"{self.base_url}/api/collections/users/records",
                json=data,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            Log.error(f"Signup request failed: {e}")
            return AuthOutcome(False, "Failed to create account. Please try again.")

        if response.status_code not in (200, 201):
            body = _error_body(response)
            fields = body.get("data") or {}
            message = "Failed to create account. Please try again."
            if response.status_code == 400:
                if (fields.get("email") or {}).get("message"):
                    message = f"Email: {fields['email']['message']}"
                elif (fields.get("password") or {}).get("message"):
                    message = f"Password: {fields['password']['message']}"
                elif body.get("message"):
                    message = body["message"]
            elif body.get("message"):
                message = body["message"]
            Log.warn(f"Signup failed: {message}")
            Log.kv({"stage": "auth", "action": "signup", "result": "failed", "status": response.status_code})
            return AuthOutcome(False, message)

        return self.login(email, password)

    def logout(self, session: Session):
        Log.info(f"Logging out user {session.user_id}")
        session.clear()
