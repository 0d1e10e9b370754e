"""
services/answer_ledger.py

Per-question answer, flag and bookmark state of one test session.
Keys are question indices (0-based), never question ids.
"""

from typing import Dict, FrozenSet, Optional, Set

from practice_engine.errors import LedgerIndexError
from practice_engine.models.session_state import LedgerSummary


class AnswerLedger:
    """
    Index → chosen option map plus flagged/bookmarked index sets.

    Every stored index satisfies ``0 <= index < question_count``.
    Changing an answer never touches the flag or bookmark of that index.
    """

    def __init__(self, question_count: int) -> None:
        if question_count < 0:
            raise ValueError("question_count must be >= 0")
        self._question_count = question_count
        self._answers: Dict[int, int] = {}
        self._flagged: Set[int] = set()
        self._bookmarked: Set[int] = set()

    @property
    def question_count(self) -> int:
        return self._question_count

    @property
    def answers(self) -> Dict[int, int]:
        return dict(self._answers)

    @property
    def flagged(self) -> FrozenSet[int]:
        return frozenset(self._flagged)

    @property
    def bookmarked(self) -> FrozenSet[int]:
        return frozenset(self._bookmarked)

    def _check(self, index: int) -> None:
        if not (0 <= index < self._question_count):
            raise LedgerIndexError(index, self._question_count)

    def set_answer(self, index: int, option_index: int) -> None:
        self._check(index)
        if option_index < 0:
            raise ValueError("option_index must be >= 0")
        self._answers[index] = option_index

    def clear_answer(self, index: int) -> None:
        self._check(index)
        self._answers.pop(index, None)

    def answer_for(self, index: int) -> Optional[int]:
        self._check(index)
        return self._answers.get(index)

    def toggle_flag(self, index: int) -> bool:
        """Returns the new flag state."""
        self._check(index)
        return _toggle(self._flagged, index)

    def toggle_bookmark(self, index: int) -> bool:
        """Returns the new bookmark state."""
        self._check(index)
        return _toggle(self._bookmarked, index)

    def is_flagged(self, index: int) -> bool:
        return index in self._flagged

    def is_bookmarked(self, index: int) -> bool:
        return index in self._bookmarked

    def summary(self) -> LedgerSummary:
        answered = len(self._answers)
        return LedgerSummary(
            answered_count=answered,
            unanswered_count=self._question_count - answered,
            flagged_count=len(self._flagged),
            bookmarked_count=len(self._bookmarked),
        )

    def snapshot(self) -> dict:
        """Deep copy of the whole ledger, for comparisons and persistence."""
        return {
            "answers": dict(self._answers),
            "flagged": sorted(self._flagged),
            "bookmarked": sorted(self._bookmarked),
        }


def _toggle(members: Set[int], index: int) -> bool:
    if index in members:
        members.discard(index)
        return False
    members.add(index)
    return True
