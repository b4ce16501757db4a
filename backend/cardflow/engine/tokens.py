from __future__ import annotations                                  # lets Python treat type hints as strings (deferred evaluation)

import json
import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

logger = logging.getLogger(__name__)

# The only durable state the engine owns on the respondent side:
# one opaque session token per form, keyed by form identifier.


def session_key(form_id: str) -> str:
    return f"cardflow:session:{form_id}"


class TokenStore(Protocol):
    def get(self, form_id: str) -> Optional[str]: ...
    def set(self, form_id: str, token: str) -> None: ...
    def remove(self, form_id: str) -> None: ...


# ---- Store Implementations ----

class InMemoryTokenStore:
    def __init__(self) -> None:
        self._tokens: Dict[str, str] = {}   # session_key(form_id) -> token
        self._lock = threading.RLock()

    def get(self, form_id: str) -> Optional[str]:
        with self._lock:
            return self._tokens.get(session_key(form_id))

    def set(self, form_id: str, token: str) -> None:
        if not token:
            raise ValueError("set: token is required.")
        with self._lock:
            self._tokens[session_key(form_id)] = token

    def remove(self, form_id: str) -> None:
        with self._lock:
            self._tokens.pop(session_key(form_id), None)


class JsonFileTokenStore:
    """Token store backed by a small JSON file, so progress survives a restart."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.RLock()

    def _read(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError:
            logger.warning("Token file %s is corrupt, starting fresh", self._path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self._path)     # atomic rename

    def get(self, form_id: str) -> Optional[str]:
        with self._lock:
            return self._read().get(session_key(form_id))

    def set(self, form_id: str, token: str) -> None:
        if not token:
            raise ValueError("set: token is required.")
        with self._lock:
            data = self._read()
            data[session_key(form_id)] = token
            self._write(data)

    def remove(self, form_id: str) -> None:
        with self._lock:
            data = self._read()
            if data.pop(session_key(form_id), None) is not None:
                self._write(data)
