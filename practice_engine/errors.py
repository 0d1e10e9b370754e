"""
errors.py

Exception hierarchy of the practice engine.
Access denial is not an error: it is reported through AccessDeniedEvent.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, Optional


class PracticeEngineError(Exception):
    """Base class for every error raised by the engine."""


# ── Configuration validation ─────────────────────────────────────────────────

class ConfigValidationError(PracticeEngineError, ValueError):
    """Raised by TestConfigBuilder before any network call is made."""


class EmptySelection(ConfigValidationError):
    def __init__(self) -> None:
        super().__init__("Please select at least one subject")


class TooManySubjects(ConfigValidationError):
    def __init__(self, count: int, limit: int) -> None:
        super().__init__(f"At most {limit} subjects can be selected (got {count})")
        self.count = count
        self.limit = limit


class QuestionCountOutOfRange(ConfigValidationError):
    def __init__(self, value: int, low: int, high: int) -> None:
        super().__init__(f"Please select between {low} and {high} questions (got {value})")
        self.value = value


class DurationOutOfRange(ConfigValidationError):
    def __init__(self, value: int, low: int, high: int) -> None:
        super().__init__(f"Duration must be between {low} and {high} minutes (got {value})")
        self.value = value


class TopicsUnavailable(ConfigValidationError):
    """An 'all topics' subject has no known topics while other subjects are narrowed."""

    def __init__(self, subject_ids: Iterable[str]) -> None:
        self.subject_ids = tuple(sorted(subject_ids))
        super().__init__(
            "Topics are not available yet for: " + ", ".join(self.subject_ids)
        )


# ── Session lifecycle ────────────────────────────────────────────────────────

class TestStartError(PracticeEngineError):
    __test__ = False  # keep pytest from collecting this as a test class

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class SubmissionError(PracticeEngineError):
    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class InvalidTransitionError(PracticeEngineError):
    def __init__(self, action: str, state: object) -> None:
        super().__init__(f"Cannot {action} while engine is {state}")
        self.action = action
        self.state = state


class LedgerIndexError(PracticeEngineError, IndexError):
    def __init__(self, index: int, question_count: int) -> None:
        super().__init__(f"Question index {index} outside [0, {question_count})")
        self.index = index
        self.question_count = question_count


# ── Topic polling / catalog ──────────────────────────────────────────────────

class PollTimeoutError(PracticeEngineError):
    """Topic generation did not finish for some subjects within the retry budget."""

    def __init__(
        self,
        unresolved: Iterable[str],
        resolved: Optional[Dict[str, object]] = None,
        attempts: int = 0,
    ) -> None:
        self.unresolved: FrozenSet[str] = frozenset(unresolved)
        self.resolved = dict(resolved or {})
        self.attempts = attempts
        super().__init__(
            "Topic generation is taking longer than expected for: "
            + ", ".join(sorted(self.unresolved))
        )


class PollCancelledError(PracticeEngineError):
    pass


class TopicLimitReachedError(PracticeEngineError):
    def __init__(self, subject_id: str, limit: int) -> None:
        super().__init__(f"Maximum {limit} topics reached for subject {subject_id}")
        self.subject_id = subject_id
        self.limit = limit


# ── Remote collaborator ──────────────────────────────────────────────────────

class BackendError(PracticeEngineError):
    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class BackendUnavailableError(BackendError):
    """Network failure or timeout talking to the practice API."""


class PaymentRequiredError(BackendError):
    """The server answered with requiresPayment."""
