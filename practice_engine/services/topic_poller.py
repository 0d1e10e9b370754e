"""
services/topic_poller.py

Bounded, cancellable polling for server-side topic generation.

Each round fetches the first page of the subjects still pending, merges
whatever arrived into the TopicCatalog right away (a slow subject never holds
back the ones that resolved), then sleeps. Rounds are counted globally; when
the budget runs out the caller learns exactly which subjects are unresolved.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

import config
from practice_engine.errors import BackendError, PollCancelledError, PollTimeoutError
from practice_engine.models.catalog import TopicPage
from practice_engine.models.events import PollProgressEvent
from practice_engine.services.topic_catalog import TopicCatalog

logger = logging.getLogger(__name__)


class CancellationToken:
    """Explicit cancel flag shared between a poll and whoever started it."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Idempotent."""
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise PollCancelledError("topic polling was cancelled")


def _topic_total(page: TopicPage) -> int:
    return max(page.pagination.total_topics, len(page.topics))


class TopicGenerationPoller:
    """
    Args:
        catalog:     catalog receiving merged pages; its backend is polled.
        on_progress: optional listener called after every round.
        sleep:       awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        catalog: TopicCatalog,
        on_progress: Optional[Callable[[PollProgressEvent], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._catalog = catalog
        self._on_progress = on_progress
        self._sleep = sleep

    async def poll_until_ready(
        self,
        subject_ids: Iterable[str],
        max_attempts: int = config.POLL_MAX_ATTEMPTS,
        interval: float = config.POLL_INTERVAL_SECONDS,
        token: Optional[CancellationToken] = None,
        baseline: Optional[Mapping[str, int]] = None,
    ) -> Dict[str, TopicPage]:
        """
        Poll until every subject has topics.

        Args:
            subject_ids:  subjects currently without topics.
            max_attempts: global round budget.
            interval:     seconds between rounds.
            token:        cancellation token; once cancelled no round is
                          scheduled and late responses are discarded.
            baseline:     {subject_id: topic_count} a subject must exceed to
                          count as resolved (used after asking for more
                          topics); defaults to zero.

        Returns:
            {subject_id: TopicPage} as merged into the catalog.

        Raises:
            PollTimeoutError:   budget exhausted; ``unresolved`` lists the
                                subjects still pending, ``resolved`` the rest.
            PollCancelledError: the token was cancelled.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        token = token or CancellationToken()
        baseline = dict(baseline or {})
        pending: List[str] = list(dict.fromkeys(subject_ids))
        resolved: Dict[str, TopicPage] = {}

        for attempt in range(1, max_attempts + 1):
            token.raise_if_cancelled()
            if not pending:
                break

            try:
                pages = await self._catalog.backend.get_topics(
                    pending, 1, self._catalog.page_size
                )
            except BackendError as e:
                logger.warning(f"Topic poll round {attempt}/{max_attempts} failed: {e}")
                pages = {}

            # A response that lands after cancellation must not touch the catalog.
            token.raise_if_cancelled()

            arrived = {
                sid: page
                for sid, page in pages.items()
                if sid in pending and _topic_total(page) > baseline.get(sid, 0)
            }
            if arrived:
                self._catalog.merge(arrived)
                for sid in arrived:
                    resolved[sid] = self._catalog.page(sid)
                pending = [sid for sid in pending if sid not in arrived]
                logger.info(f"Topics ready for {sorted(arrived)}")

            self._report(attempt, max_attempts, resolved, pending)

            if not pending:
                return resolved
            if attempt < max_attempts:
                await self._sleep(interval)

        token.raise_if_cancelled()
        if pending:
            logger.warning(f"Topic generation timed out for {pending}")
            raise PollTimeoutError(pending, resolved, attempts=max_attempts)
        return resolved

    def _report(
        self, attempt: int, max_attempts: int,
        resolved: Mapping[str, TopicPage], pending: List[str],
    ) -> None:
        if self._on_progress is None:
            return
        self._on_progress(
            PollProgressEvent(
                attempt=attempt,
                max_attempts=max_attempts,
                resolved=sorted(resolved),
                pending=list(pending),
            )
        )
