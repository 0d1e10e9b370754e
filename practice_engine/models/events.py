"""
models/events.py

Lifecycle events the engine emits to the presentation layer.
The engine never renders or notifies by itself; subscribers decide how to
show each event.
"""

from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict

from practice_engine.models.result_model import CompiledResult
from practice_engine.models.session_state import EngineState


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)


class AccessDeniedReason(str, Enum):
    NAVIGATION = "navigation"
    TIMER_EXPIRED = "timer_expired"
    SUBMISSION = "submission"
    DOWNLOAD = "download"


class StateChangedEvent(_Event):
    kind: Literal["state_changed"] = "state_changed"
    previous: EngineState
    current: EngineState


class AccessDeniedEvent(_Event):
    """Expected control-flow signal: the user has to upgrade to continue."""
    kind: Literal["access_denied"] = "access_denied"
    reason: AccessDeniedReason
    requested_index: Optional[int] = None
    free_question_limit: Optional[int] = None


class PollProgressEvent(_Event):
    kind: Literal["poll_progress"] = "poll_progress"
    attempt: int
    max_attempts: int
    resolved: List[str]
    pending: List[str]


class TimerTickEvent(_Event):
    kind: Literal["timer_tick"] = "timer_tick"
    remaining_seconds: int
    total_seconds: int
    is_warning: bool = False


class TimerExpiredEvent(_Event):
    kind: Literal["timer_expired"] = "timer_expired"


class SubmissionResultEvent(_Event):
    kind: Literal["submission_result"] = "submission_result"
    result: CompiledResult


class SubmissionErrorEvent(_Event):
    kind: Literal["submission_error"] = "submission_error"
    message: str
    restored_state: EngineState


EngineEvent = Union[
    StateChangedEvent,
    AccessDeniedEvent,
    PollProgressEvent,
    TimerTickEvent,
    TimerExpiredEvent,
    SubmissionResultEvent,
    SubmissionErrorEvent,
]
