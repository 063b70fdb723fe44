"""
Session Store
=============
Durable key/value storage for the session layer.

Keys written by this package:
    - ``login_timestamp``     — SessionRecord (string-encoded epoch millis)
    - ``ii_login_initiated``  — login-in-progress flag (presence = True)
    - ``identity`` / ``delegation`` — provider credential
    - ``ii_pending_key`` / ``ii_login_state`` — redirect ceremony scratch

``JsonFileSessionStore`` re-reads the file on every access so separate
processes (tabs of one browser, a CLI run, ...) see each other's writes
on their next check.  There is no change notification and the last
writer wins.  The web UI gives every browser its own file
(``scoped_state_path``); the CLI uses the base file.

Usage::

    from opend.auth.session_store import JsonFileSessionStore

    store = JsonFileSessionStore(".opend/session_state.json")
    store.set("login_timestamp", "1700000000000")
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


_DEFAULT_STATE_PATH = ".opend/session_state.json"
_SCOPE_ID = re.compile(r"[A-Za-z0-9_-]{16,64}")


class BaseSessionStore(ABC):
    """Minimal string key/value contract injected into the session layer."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> List[str]:
        ...

    def clear(self) -> None:
        for key in self.keys():
            self.delete(key)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class MemorySessionStore(BaseSessionStore):
    """In-process store.  Used by tests and embedded callers."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"Session store values must be str, got {type(value).__name__}")
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data.keys())


class JsonFileSessionStore(BaseSessionStore):
    """Persists a flat JSON object of string values on disk.

    Writes go through a temp file + ``os.replace`` so a concurrent reader
    never sees a half-written file.  A corrupt file reads as empty and is
    replaced on the next write.
    """

    def __init__(self, path: str = _DEFAULT_STATE_PATH):
        self.path = Path(path)
        self._lock = threading.Lock()

    # ── Public API ────────────────────────────────────────────────

    def get(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"Session store values must be str, got {type(value).__name__}")
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key not in data:
                return
            del data[key]
            self._write(data)

    def keys(self) -> List[str]:
        return list(self._read().keys())

    def clear(self) -> None:
        with self._lock:
            self._write({})

    # ── Internal ──────────────────────────────────────────────────

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except ValueError as exc:
            # JSONDecodeError and UnicodeDecodeError are both ValueErrors
            logger.warning(f"[SESSION] Corrupt session state file {self.path}: {exc}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"[SESSION] Session state file {self.path} is not an object — ignoring")
            return {}
        return data

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=".session_state.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, sort_keys=True)
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise


def scoped_state_path(base_path: str, scope_id: str) -> str:
    """State file for one browser, next to the shared *base_path*.

    Raises ``ValueError`` unless *scope_id* is 16-64 URL-safe characters,
    so an id taken from a query string cannot escape the directory.
    """
    if not isinstance(scope_id, str) or not _SCOPE_ID.fullmatch(scope_id):
        raise ValueError("Session scope id must be 16-64 URL-safe characters")
    return str(Path(base_path).parent / f"session_{scope_id}.json")
