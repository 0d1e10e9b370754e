"""
models/result_model.py

Submission payload, the server's scored result, and the reconciled
result shown on the results screen.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from practice_engine.models.base import ApiModel
from practice_engine.models.question_model import Question, QuestionDetail


class AnswerEntry(ApiModel):
    question_id: str
    user_answer: Optional[int] = None


class SubmissionPayload(ApiModel):
    """
    Body of the submit call.

    Every question of the session appears exactly once, in session order;
    skipped questions carry ``user_answer=None`` so the server can tell
    "answered incorrectly" from "skipped".
    """
    session_id: str
    answers: List[AnswerEntry]
    time_spent_seconds: int = Field(..., ge=0)

    def to_request(self) -> Dict[str, Any]:
        return {
            "testSessionId": self.session_id,
            "answers": [a.model_dump(by_alias=True) for a in self.answers],
            "timeSpent": self.time_spent_seconds,
        }


class TestResult(ApiModel):
    """Server-computed score; produced once per successful submission."""
    __test__ = False

    id: Optional[str] = None
    score: float = Field(..., ge=0.0)
    correct_answers: int = Field(..., ge=0)
    total_questions: int = Field(..., ge=0)
    time_spent_seconds: int = Field(default=0, ge=0, alias="timeSpent")
    subject_scores: Dict[str, float] = Field(default_factory=dict)
    completed_at: Optional[datetime] = None
    can_download_pdf: bool = Field(default=False, alias="canDownloadPDF")


class SubmissionResponse(ApiModel):
    test_result: TestResult
    questions: List[QuestionDetail] = Field(default_factory=list)


class PerformanceBand(str, Enum):
    EXCELLENT = "excellent"
    GREAT = "great"
    GOOD = "good"
    FAIR = "fair"
    KEEP_PRACTICING = "keep_practicing"


class ReviewedQuestion(BaseModel):
    """One question of a finished test, in the order it was presented."""
    index: int
    question: Question
    user_answer: Optional[int] = None
    correct_answer: Optional[int] = None
    is_correct: Optional[bool] = None
    explanation: Optional[str] = None
    flagged: bool = False
    bookmarked: bool = False

    @property
    def is_skipped(self) -> bool:
        return self.user_answer is None


class SubjectBreakdown(BaseModel):
    subject: str
    total: int = 0
    correct: int = 0
    incorrect: int = 0
    unanswered: int = 0
    score: float = 0.0


class CompiledResult(BaseModel):
    """Terminal, read-only state of the RESULTS phase."""
    result: TestResult
    questions: List[ReviewedQuestion] = Field(default_factory=list)
    subject_breakdown: List[SubjectBreakdown] = Field(default_factory=list)
    performance: PerformanceBand = PerformanceBand.KEEP_PRACTICING
    passed: bool = False

    @property
    def incorrect_questions(self) -> List[ReviewedQuestion]:
        return [q for q in self.questions if q.is_correct is False]
