"""
services/access_gate.py

Free/paid access rule. The single place in the engine that encodes the
monetization rule; navigation, timer expiry, submission and PDF download all
ask this module.
Pure functions, no state.
"""

from datetime import datetime, timezone
from typing import Optional

import config
from practice_engine.models.session_state import AccessStatus, Role, TestSession


def has_full_access(status: AccessStatus, now: Optional[datetime] = None) -> bool:
    """
    True for admins and for users whose payment has not expired.
    A paid user without an expiry date keeps access indefinitely.
    """
    if status.role is Role.ADMIN:
        return True
    if not status.has_paid:
        return False
    if status.payment_expiry is None:
        return True
    now = now or datetime.now(timezone.utc)
    expiry = status.payment_expiry
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return now <= expiry


def allows(
    status: AccessStatus,
    requested_index: int,
    free_question_limit: int,
    now: Optional[datetime] = None,
) -> bool:
    """
    Whether the question at ``requested_index`` may be shown.

    Monotonic in ``requested_index`` for free users: once an index is denied,
    every later index is denied too.
    """
    if has_full_access(status, now):
        return True
    return requested_index < free_question_limit


def allows_submission(status: AccessStatus, now: Optional[datetime] = None) -> bool:
    """Submitting a test (manually or on expiry) requires full access."""
    return has_full_access(status, now)


def resolve_free_limit(session: Optional[TestSession], status: AccessStatus) -> int:
    """Session limit first, then the user's status, then the configured default."""
    if session is not None and session.free_question_limit is not None:
        return session.free_question_limit
    if status.free_question_limit is not None:
        return status.free_question_limit
    return config.DEFAULT_FREE_QUESTION_LIMIT
