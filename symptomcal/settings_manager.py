"""
Application settings management for user preferences.

Tracks the backend and hook server URLs, the profile fields the mental-health model needs
(age, gender), the healthcare provider contact, and the predictor commands
run by the server-side hooks. Settings are persisted to the user's config
directory so they survive across restarts.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import List, Optional, TypedDict

from symptomcal.logging_helper import Log


class SettingsSchema(TypedDict, total=False):
    pocketbase_url: str
    hook_server_url: str
    user_age: Optional[int]
    user_gender: str
    provider_name: str
    provider_phone: str
    provider_email: str
    provider_address: str
    physical_model_command: List[str]
    mental_model_command: List[str]
    min_symptoms_for_models: int


def _settings_dir() -> Path:
    override = os.getenv("SYMPTOMCAL_SETTINGS_DIR")
    if override:
        return Path(override)
    return Path.home() / ".config" / "symptomcal"


DEFAULT_SETTINGS: SettingsSchema = {
    "pocketbase_url": "http://127.0.0.1:8090",
    "hook_server_url": "http://127.0.0.1:8005",
    "user_age": None,
    "user_gender": "",
    "provider_name": "",
    "provider_phone": "",
    "provider_email": "",
    "provider_address": "",
    "physical_model_command": ["python", "predictor.py"],
    "mental_model_command": ["python", "mental_predictor.py"],
    "min_symptoms_for_models": 3,
}


def settings_file() -> Path:
    return _settings_dir() / "settings.json"


def _ensure_settings_dir() -> None:
    try:
        _settings_dir().mkdir(parents=True, exist_ok=True)
    except OSError as err:
        Log.warn(f"Unable to create settings directory {_settings_dir()}: {err}")


def _defaults() -> SettingsSchema:
    defaults: SettingsSchema = json.loads(json.dumps(DEFAULT_SETTINGS))
    env_url = os.getenv("POCKETBASE_URL")
    if env_url:
        defaults["pocketbase_url"] = env_url
    env_hook_url = os.getenv("SYMPTOMCAL_HOOK_URL")
    if env_hook_url:
        defaults["hook_server_url"] = env_hook_url
    return defaults


def load_settings() -> SettingsSchema:
    """
    Load settings from disk, falling back to defaults if anything fails.
    """
    _ensure_settings_dir()
    path = settings_file()
    if not path.exists():
        Log.info(f"Settings file not found, using defaults: {path}")
        return _defaults()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("Settings data is not a JSON object")
    except (OSError, ValueError) as err:
        Log.warn(f"Failed to read settings file ({path}): {err}")
        return _defaults()

    merged = _defaults()
    # Merge only known keys
    for key in DEFAULT_SETTINGS:
        if key in data:
            merged[key] = data[key]  # type: ignore[literal-required]
    return merged


def save_settings(settings: SettingsSchema) -> None:
    """
    Persist settings to disk.
    """
    _ensure_settings_dir()
    path = settings_file()
    try:
        path.write_text(
            json.dumps(settings, indent=2, sort_keys=True),
            encoding="utf-8",
        )
    except OSError as err:
        Log.warn(f"Failed to write settings file ({path}): {err}")


def get_pocketbase_url() -> str:
    return load_settings().get("pocketbase_url") or DEFAULT_SETTINGS["pocketbase_url"]


def get_hook_server_url() -> str:
    """Base URL of the `symptomcal serve` classifier hooks."""
    return load_settings().get("hook_server_url") or DEFAULT_SETTINGS["hook_server_url"]


def get_user_profile() -> tuple:
    """(age, gender) for the mental-health model; age is None when unset or invalid."""
    settings = load_settings()
    age = settings.get("user_age")
    if age is not None and (not isinstance(age, int) or isinstance(age, bool) or not 0 < age < 130):
        Log.warn(f"Invalid user_age value '{age}', ignoring")
        age = None
    gender = settings.get("user_gender") or ""
    return age, str(gender)


def set_user_profile(age: Optional[int], gender: str) -> None:
    if age is not None and not 0 < int(age) < 130:
        raise ValueError(f"Invalid age: {age}")
    settings = load_settings()
    settings["user_age"] = int(age) if age is not None else None
    settings["user_gender"] = gender.strip()
    save_settings(settings)
    Log.info(f"Saved user profile: age={settings['user_age']}, gender={settings['user_gender']}")


def get_provider_contact() -> dict:
    settings = load_settings()
    return {key: settings.get(f"provider_{key}", "") for key in ("name", "phone", "email", "address")}


def set_provider_contact(name: str = "", phone: str = "", email: str = "", address: str = "") -> None:
    settings = load_settings()
    settings["provider_name"] = name.strip()
    settings["provider_phone"] = phone.strip()
    settings["provider_email"] = email.strip()
    settings["provider_address"] = address.strip()
    save_settings(settings)
    Log.info("Saved healthcare provider contact")


def get_model_command(kind: str) -> List[str]:
    """Predictor command line for "physical" or "mental"."""
    if kind not in ("physical", "mental"):
        raise ValueError(f"Unknown model kind: {kind}")
    key = f"{kind}_model_command"
    command = load_settings().get(key)  # type: ignore[misc]
    if not isinstance(command, list) or not command or not all(isinstance(part, str) for part in command):
        Log.warn(f"Invalid {key} value '{command}', using default")
        command = list(DEFAULT_SETTINGS[key])  # type: ignore[literal-required]
    return [os.path.expanduser(part) for part in command]


def get_min_symptoms_for_models() -> int:
    value = load_settings().get("min_symptoms_for_models", 3)
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        Log.warn(f"Invalid min_symptoms_for_models value '{value}', defaulting to 3")
        return 3
    return value
