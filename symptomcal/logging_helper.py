"""
Terminal-first logging shared by the chat client, the realtime listener thread
and the hook server. Every line goes to stdout and to a per-process log file.
"""

import os
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Optional

_project_root = Path(__file__).parent.parent

# chat loop, realtime listener and server worker threads all write here
_write_lock = threading.Lock()
_log_file = None
_log_file_path: Optional[Path] = None


def _log_dir() -> Path:
    override = os.getenv("SYMPTOMCAL_LOG_DIR")
    return Path(override) if override else _project_root / "logs"


def _open_log_file():
    """Create logs/symptomcal_<timestamp>_<pid>.log on first use."""
    global _log_file, _log_file_path
    directory = _log_dir()
    directory.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    _log_file_path = directory / f"symptomcal_{stamp}_{os.getpid()}.log"
    _log_file = open(_log_file_path, 'a', encoding='utf-8')


def _thread_tag() -> str:
    thread = threading.current_thread()
    if thread is threading.main_thread():
        return ""
    return f"[{thread.name}] "


def _log(message: str):
    """Write message to both stdout and log file."""
    if message:
        message = _thread_tag() + message
    with _write_lock:
        if _log_file is None:
            _open_log_file()
        print(message)
        _log_file.write(message + '\n')
        _log_file.flush()


def _format_value(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if value is None:
        return "-"
    if isinstance(value, (list, tuple, set)):
        return ",".join(str(item) for item in value)
    return str(value)


class Log:
    """Simple logging class that outputs to stdout and log file with formatted prefixes."""

    @staticmethod
    def section(title: str):
        """Print a section header: blank line + '===== TITLE ====='"""
        _log("")
        _log(f"===== {title} =====")

    @staticmethod
    def info(message: str):
        _log(f"[INFO] {message}")

    @staticmethod
    def warn(message: str):
        _log(f"[WARN] {message}")

    @staticmethod
    def error(message: str):
        _log(f"[ERROR] {message}")

    @staticmethod
    def kv(pairs: Dict[str, Any]):
        """
        Print one pipeline record: '[KV] stage=validate | result=success'

        Dates are written in ISO form, None as '-', sequences comma-joined.
        """
        kv_string = " | ".join(f"{k}={_format_value(v)}" for k, v in pairs.items())
        _log(f"[KV] {kv_string}")

    @staticmethod
    def get_log_path() -> str:
        """Path of this process's log file (created if nothing was logged yet)."""
        with _write_lock:
            if _log_file is None:
                _open_log_file()
        return str(_log_file_path)
