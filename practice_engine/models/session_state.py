"""
models/session_state.py

Test session lifecycle models.
Pydantic BaseModel based, no UI code.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

import config
from practice_engine.models.base import ApiModel
from practice_engine.models.question_model import Question


class EngineState(str, Enum):
    SETUP = "setup"
    GENERATING = "generating"
    IN_PROGRESS = "in_progress"
    EXPIRED = "expired"
    SUBMITTING = "submitting"
    COMPLETE = "complete"


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class AccessStatus(ApiModel):
    """
    Payment/access state of the current user, supplied by the payment service.
    Read-only to the engine; refreshed at session start.
    """
    role: Role = Role.USER
    has_paid: bool = False
    payment_expiry: Optional[datetime] = None
    free_question_limit: int = Field(default=config.DEFAULT_FREE_QUESTION_LIMIT, ge=0)

    @classmethod
    def no_access(cls, free_question_limit: int = config.DEFAULT_FREE_QUESTION_LIMIT) -> "AccessStatus":
        """Conservative status used when the real one cannot be fetched."""
        return cls(has_paid=False, free_question_limit=free_question_limit)


class TestSession(ApiModel):
    """
    One generated, time-boxed test.

    Attributes:
        id:                  server session id, echoed on submission.
        questions:           issued questions in display order.
        duration_minutes:    time limit (API field ``duration``).
        free_question_limit: server-side free limit (API ``freeLimit``);
                             None when the user has full access.
    """
    __test__ = False

    id: str
    name: str = ""
    questions: List[Question] = Field(default_factory=list)
    duration_minutes: int = Field(..., gt=0, alias="duration")
    free_question_limit: Optional[int] = Field(default=None, ge=0, alias="freeLimit")
    has_full_access: bool = False
    is_limited: bool = False

    @property
    def question_count(self) -> int:
        return len(self.questions)

    @property
    def total_seconds(self) -> int:
        return self.duration_minutes * 60


class QuestionStatus(str, Enum):
    """Navigation palette colouring of one question."""
    CURRENT = "current"
    ANSWERED = "answered"
    FLAGGED = "flagged"
    UNANSWERED = "unanswered"
    LOCKED = "locked"


class LedgerSummary(BaseModel):
    answered_count: int = 0
    unanswered_count: int = 0
    flagged_count: int = 0
    bookmarked_count: int = 0


class EngineSnapshot(BaseModel):
    """View model for the presentation layer (pure data)."""

    state: EngineState
    session_id: Optional[str] = None
    current_index: int = 0
    question_count: int = 0
    question: Optional[Question] = None
    answers: Dict[int, int] = Field(default_factory=dict)
    flagged: List[int] = Field(default_factory=list)
    bookmarked: List[int] = Field(default_factory=list)
    summary: LedgerSummary = Field(default_factory=LedgerSummary)
    palette: List[QuestionStatus] = Field(default_factory=list)
    remaining_seconds: Optional[int] = None
    total_seconds: Optional[int] = None
    is_warning: bool = False
    elapsed_seconds: int = 0
    free_question_limit: Optional[int] = None
    has_full_access: bool = False
