"""
services/result_compiler.py

Submission payload assembly and result reconciliation.
Scoring itself happens server-side; this module makes sure the payload is
complete and lines the returned detail up with the local session.
Pure Python functions, no UI code, no global state.
"""

import logging
from collections import defaultdict
from typing import Dict, List

import config
from practice_engine.models.question_model import QuestionDetail
from practice_engine.models.result_model import (
    AnswerEntry,
    CompiledResult,
    PerformanceBand,
    ReviewedQuestion,
    SubjectBreakdown,
    SubmissionPayload,
    SubmissionResponse,
)
from practice_engine.models.session_state import TestSession
from practice_engine.services.answer_ledger import AnswerLedger

logger = logging.getLogger(__name__)


def build_payload(
    session: TestSession,
    ledger: AnswerLedger,
    time_spent_seconds: int,
) -> SubmissionPayload:
    """
    Build the submit body.

    Every question index 0..n-1 yields exactly one entry, in session order;
    an index absent from the ledger becomes ``user_answer=None``.

    Args:
        session:            the running test session.
        ledger:             its answer ledger.
        time_spent_seconds: wall-clock seconds since the session started.
    """
    answers = ledger.answers
    entries = [
        AnswerEntry(question_id=q.id, user_answer=answers.get(index))
        for index, q in enumerate(session.questions)
    ]
    return SubmissionPayload(
        session_id=session.id,
        answers=entries,
        time_spent_seconds=max(0, int(time_spent_seconds)),
    )


def compile_result(
    session: TestSession,
    ledger: AnswerLedger,
    response: SubmissionResponse,
) -> CompiledResult:
    """
    Reconcile the server's result with the local session.

    Server detail is matched by question id (the server may return questions
    in a different order); the local ledger stays the source of the user's
    answers. A question the server returned no detail for keeps
    ``is_correct=None``.
    """
    details: Dict[str, QuestionDetail] = {d.id: d for d in response.questions}
    reviewed: List[ReviewedQuestion] = []

    for index, question in enumerate(session.questions):
        user_answer = ledger.answers.get(index)
        detail = details.get(question.id)
        if detail is None:
            logger.warning(f"No result detail for question {question.id}")
            is_correct = None
            correct_answer = None
            explanation = None
        else:
            correct_answer = detail.correct_answer
            explanation = detail.explanation
            if detail.is_correct is not None:
                is_correct = detail.is_correct
            elif correct_answer is not None:
                is_correct = user_answer == correct_answer
            else:
                is_correct = None
            if detail.user_answer != user_answer:
                logger.warning(
                    f"Server recorded answer {detail.user_answer} for question "
                    f"{question.id}, local ledger has {user_answer}"
                )

        reviewed.append(
            ReviewedQuestion(
                index=index,
                question=question,
                user_answer=user_answer,
                correct_answer=correct_answer,
                is_correct=is_correct,
                explanation=explanation,
                flagged=ledger.is_flagged(index),
                bookmarked=ledger.is_bookmarked(index),
            )
        )

    score = response.test_result.score
    return CompiledResult(
        result=response.test_result,
        questions=reviewed,
        subject_breakdown=calculate_subject_breakdown(reviewed),
        performance=performance_band(score),
        passed=is_passed(score),
    )


def calculate_subject_breakdown(questions: List[ReviewedQuestion]) -> List[SubjectBreakdown]:
    """
    Per-subject counts, sorted by subject name.

    Questions whose correctness is unknown count toward ``total`` only.
    """
    buckets: Dict[str, Dict[str, int]] = defaultdict(
        lambda: {"total": 0, "correct": 0, "incorrect": 0, "unanswered": 0}
    )

    for q in questions:
        subj = q.question.subject or "Unknown"
        buckets[subj]["total"] += 1
        if q.is_correct is None:
            continue
        if q.user_answer is None:
            buckets[subj]["unanswered"] += 1
        elif q.is_correct:
            buckets[subj]["correct"] += 1
        else:
            buckets[subj]["incorrect"] += 1

    result = []
    for subj in sorted(buckets):
        b = buckets[subj]
        scorable = b["correct"] + b["incorrect"] + b["unanswered"]
        score = round(b["correct"] / scorable * 100, 1) if scorable else 0.0
        result.append(SubjectBreakdown(subject=subj, score=score, **b))
    return result


def performance_band(score: float) -> PerformanceBand:
    if score >= 90:
        return PerformanceBand.EXCELLENT
    if score >= 80:
        return PerformanceBand.GREAT
    if score >= 70:
        return PerformanceBand.GOOD
    if score >= 60:
        return PerformanceBand.FAIR
    return PerformanceBand.KEEP_PRACTICING


def is_passed(score: float, pass_score: float = config.PASS_SCORE) -> bool:
    """
    Pass/fail verdict.

    Args:
        score:      server score (0.0 ~ 100.0).
        pass_score: pass mark (default 60.0).
    """
    return score >= pass_score
