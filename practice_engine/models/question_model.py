"""
models/question_model.py

Questions issued by the practice API.
Question is what the user sees during the test; QuestionDetail is the
server's post-submission view with the correct answer and explanation.
"""

from typing import List, Optional

from pydantic import Field, field_validator

from practice_engine.models.base import ApiModel


class Question(ApiModel):
    """
    Single multiple-choice question of a test session.
    Server-issued and immutable; owned by the TestSession that contains it.
    """
    id: str = Field(
        ...,
        description="Server question id"
    )
    text: str = Field(
        ...,
        min_length=1,
        description="Question stem"
    )
    options: List[str] = Field(
        ...,
        description="Answer options; answers refer to them by index"
    )
    subject: str = Field(
        default="Unknown",
        description="Subject name"
    )
    topic: str = Field(
        default="Unknown",
        description="Topic name"
    )

    @field_validator('options')
    @classmethod
    def validate_options_length(cls, v: List[str]) -> List[str]:
        """A question needs at least two options to be answerable."""
        if len(v) < 2:
            raise ValueError("options must contain at least 2 entries")
        return v


class QuestionDetail(ApiModel):
    """Per-question correctness returned by the submit call."""
    id: str
    text: str = ""
    options: List[str] = Field(default_factory=list)
    correct_answer: Optional[int] = None
    explanation: Optional[str] = None
    user_answer: Optional[int] = None
    is_correct: Optional[bool] = None
    subject: Optional[str] = None
    topic: Optional[str] = None
