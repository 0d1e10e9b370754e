"""
services/config_builder.py

Validates the setup-screen selection and assembles a TestConfig.
Pure function of its inputs: no I/O, no mutation.
"""

from typing import Dict, List, Mapping, Optional, Sequence, Set

import config
from practice_engine.errors import (
    DurationOutOfRange,
    EmptySelection,
    QuestionCountOutOfRange,
    TooManySubjects,
    TopicsUnavailable,
)
from practice_engine.models.test_config import RANDOM_TOPICS, TestConfig, TestSelection


class TestConfigBuilder:
    """
    Topic resolution policy:

    - random-topic mode: the server picks topics (``RANDOM_TOPICS``);
    - otherwise the union of the per-subject selections, where a subject
      with NO selected topics means ALL of that subject's topics. That
      subject is expanded to every id in ``available_topics``, so it is not
      silently dropped when other subjects are narrowed down. Only listed
      ids are sent: callers with a paginated catalog fetch the remaining
      pages first (``TopicCatalog.load_all``);
    - if no subject is narrowed, the result is the empty set, which the
      server reads as "all topics of the selected subjects".
    """
    __test__ = False

    def __init__(
        self,
        max_subjects: int = config.MAX_SUBJECTS,
        question_range: Sequence[int] = (config.MIN_QUESTIONS, config.MAX_QUESTIONS),
        duration_range: Sequence[int] = (config.MIN_DURATION_MINUTES, config.MAX_DURATION_MINUTES),
    ) -> None:
        self._max_subjects = max_subjects
        self._question_range = tuple(question_range)
        self._duration_range = tuple(duration_range)

    def build(
        self,
        selection: TestSelection,
        available_topics: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> TestConfig:
        """
        Args:
            selection:        current setup-screen state.
            available_topics: {subject_id: [topic_id, ...]} known to the
                              catalog; used to expand "all topics" subjects.

        Raises:
            EmptySelection, TooManySubjects, QuestionCountOutOfRange,
            DurationOutOfRange, TopicsUnavailable
        """
        subject_ids = list(dict.fromkeys(selection.subject_ids))
        if not subject_ids:
            raise EmptySelection()
        if len(subject_ids) > self._max_subjects:
            raise TooManySubjects(len(subject_ids), self._max_subjects)

        low, high = self._question_range
        if not (low <= selection.total_questions <= high):
            raise QuestionCountOutOfRange(selection.total_questions, low, high)

        low, high = self._duration_range
        if not (low <= selection.duration_minutes <= high):
            raise DurationOutOfRange(selection.duration_minutes, low, high)

        if selection.random_topics:
            topic_ids = RANDOM_TOPICS
        else:
            topic_ids = frozenset(
                self._resolve_topics(subject_ids, selection.selected_topics, available_topics or {})
            )

        return TestConfig(
            subject_ids=frozenset(subject_ids),
            topic_ids=topic_ids,
            difficulty=selection.difficulty,
            total_questions=selection.total_questions,
            duration_minutes=selection.duration_minutes,
        )

    @staticmethod
    def _resolve_topics(
        subject_ids: List[str],
        selected: Mapping[str, Sequence[str]],
        available: Mapping[str, Sequence[str]],
    ) -> Set[str]:
        explicit: Dict[str, List[str]] = {
            sid: list(selected.get(sid) or []) for sid in subject_ids
        }
        if not any(explicit.values()):
            # Nothing narrowed: every topic of every selected subject.
            return set()

        topic_ids: Set[str] = set()
        missing: List[str] = []
        for sid, chosen in explicit.items():
            if chosen:
                topic_ids.update(chosen)
                continue
            # Empty selection for this subject means all of its topics.
            known = list(available.get(sid) or [])
            if not known:
                missing.append(sid)
            topic_ids.update(known)

        if missing:
            raise TopicsUnavailable(missing)
        return topic_ids
