"""
api/session.py

Multi-user in-memory sessions (cookie based)

Each browser gets a UUID session id and its own workspace: bearer token,
topic catalog, one topic poll per subject, test engine and the queue of
engine events not yet fetched by the page. Sessions expire after SESSION_TTL.
"""

import threading
import time
import uuid
from collections import deque
from typing import Any, Iterable

import config
from practice_engine.models.session_state import Role

_lock = threading.Lock()
_sessions: dict[str, dict[str, Any]] = {}
_timestamps: dict[str, float] = {}

SESSION_TTL = config.SESSION_TTL
MAX_QUEUED_EVENTS = 500


def _new_state() -> dict[str, Any]:
    return {
        "token": "",
        "role": Role.USER,
        "backend": None,
        "catalog": None,
        "polls": {},
        "poll_errors": {},
        "engine": None,
        "unsubscribe": None,
        "events": deque(maxlen=MAX_QUEUED_EVENTS),
    }


def dispose_engine(state: dict[str, Any]) -> None:
    """Stop the engine's countdown/background work and drop it."""
    unsubscribe = state.get("unsubscribe")
    if unsubscribe is not None:
        unsubscribe()
    engine = state.get("engine")
    if engine is not None:
        engine.dispose()
    state["engine"] = None
    state["unsubscribe"] = None


def cancel_polls(state: dict[str, Any], subject_ids: Iterable[str] | None = None) -> None:
    """Cancel the topic polls of ``subject_ids`` (all of them when None)."""
    polls: dict[str, dict[str, Any]] = state.get("polls") or {}
    targets = list(polls) if subject_ids is None else [sid for sid in subject_ids if sid in polls]
    for sid in targets:
        poll = polls.pop(sid)
        poll["token"].cancel()
        task = poll.get("task")
        if task is not None and not task.done():
            task.cancel()


def _dispose(state: dict[str, Any]) -> None:
    cancel_polls(state)
    dispose_engine(state)


def create_session() -> str:
    """Create a new session and return its id."""
    sid = uuid.uuid4().hex
    with _lock:
        _sessions[sid] = _new_state()
        _timestamps[sid] = time.time()
    return sid


def get_session(sid: str) -> dict[str, Any] | None:
    """Session data for ``sid``; None when missing or expired."""
    expired = None
    with _lock:
        if sid not in _sessions:
            return None
        if time.time() - _timestamps[sid] > SESSION_TTL:
            expired = _sessions.pop(sid)
            del _timestamps[sid]
        else:
            _timestamps[sid] = time.time()  # refresh on access
            return _sessions[sid]
    _dispose(expired)
    return None


def put(sid: str, key: str, value) -> None:
    with _lock:
        if sid in _sessions:
            _sessions[sid][key] = value
            _timestamps[sid] = time.time()


def reset(sid: str) -> None:
    """Reset the session workspace (the token and role are kept)."""
    with _lock:
        old = _sessions.get(sid)
        if old is None:
            return
        state = _new_state()
        state["token"] = old.get("token", "")
        state["role"] = old.get("role", Role.USER)
        _sessions[sid] = state
        _timestamps[sid] = time.time()
    _dispose(old)


def cleanup_expired() -> int:
    """Drop expired sessions. Returns how many were removed."""
    now = time.time()
    with _lock:
        expired = [sid for sid, ts in _timestamps.items() if now - ts > SESSION_TTL]
        states = [_sessions.pop(sid) for sid in expired]
        for sid in expired:
            del _timestamps[sid]
    for state in states:
        _dispose(state)
    return len(states)


def clear_all() -> None:
    """Dispose every session (application shutdown)."""
    with _lock:
        states = list(_sessions.values())
        _sessions.clear()
        _timestamps.clear()
    for state in states:
        _dispose(state)
