"""
services/topic_catalog.py

Client-side cache of subjects and their paginated topics.
Pages are merged in as they arrive and never shrink; the catalog itself does
no polling (see topic_poller.py).
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import config
from practice_engine.errors import TopicLimitReachedError
from practice_engine.models.catalog import Subject, Topic, TopicPage
from practice_engine.services.backend import PracticeBackend

logger = logging.getLogger(__name__)


class TopicCatalog:
    def __init__(
        self,
        backend: PracticeBackend,
        page_size: int = config.TOPIC_PAGE_SIZE,
        max_topics: int = config.MAX_TOPICS_PER_SUBJECT,
    ) -> None:
        self._backend = backend
        self._page_size = page_size
        self._max_topics = max_topics
        self._subjects: List[Subject] = []
        self._pages: Dict[str, TopicPage] = {}

    @property
    def backend(self) -> PracticeBackend:
        return self._backend

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def subjects(self) -> List[Subject]:
        return list(self._subjects)

    @property
    def pages(self) -> Dict[str, TopicPage]:
        return dict(self._pages)

    def subject(self, subject_id: str) -> Optional[Subject]:
        return next((s for s in self._subjects if s.id == subject_id), None)

    def page(self, subject_id: str) -> Optional[TopicPage]:
        return self._pages.get(subject_id)

    def topics_for(self, subject_id: str) -> List[Topic]:
        page = self._pages.get(subject_id)
        return list(page.topics) if page else []

    def topic_ids_for(self, subject_id: str) -> List[str]:
        return [t.id for t in self.topics_for(subject_id)]

    def has_topics(self, subject_id: str) -> bool:
        page = self._pages.get(subject_id)
        return page is not None and not page.is_empty

    def available_topics(self) -> Dict[str, List[str]]:
        """{subject_id: [topic_id, ...]} snapshot for TestConfigBuilder."""
        return {sid: page.topic_ids for sid, page in self._pages.items()}

    def pending_subjects(self, subject_ids: Iterable[str]) -> List[str]:
        """Subjects among ``subject_ids`` that still have no topics."""
        return [sid for sid in subject_ids if not self.has_topics(sid)]

    # ── mutation ────────────────────────────────────────────────────────────

    def merge(self, pages: Mapping[str, TopicPage]) -> List[str]:
        """
        Merge fetched pages into the cache.

        Empty pages only register the subject; they never erase topics that
        were already known. Returns the ids of subjects that now have topics.
        """
        resolved: List[str] = []
        for subject_id, page in pages.items():
            current = self._pages.get(subject_id)
            self._pages[subject_id] = page if current is None else current.merged_with(page)
            if self.has_topics(subject_id):
                resolved.append(subject_id)
        return resolved

    def forget(self, subject_ids: Iterable[str]) -> None:
        """Drop cached topics of deselected subjects."""
        for sid in subject_ids:
            self._pages.pop(sid, None)

    def clear(self) -> None:
        self._pages.clear()

    # ── loading ─────────────────────────────────────────────────────────────

    async def load_subjects(self) -> List[Subject]:
        self._subjects = list(await self._backend.list_subjects())
        logger.info(f"Loaded {len(self._subjects)} subjects")
        return self.subjects

    async def load_topics(self, subject_ids: Sequence[str]) -> List[str]:
        """
        Fetch the first page for ``subject_ids``.

        The server starts generating topics for a subject that has none;
        the returned ids are those still empty, to be handed to the poller.
        """
        if not subject_ids:
            return []
        pages = await self._backend.get_topics(list(subject_ids), 1, self._page_size)
        self.merge(pages)
        pending = self.pending_subjects(subject_ids)
        if pending:
            logger.info(f"Topics still generating for {pending}")
        return pending

    async def load_more(self, subject_id: str) -> bool:
        """
        Load the next page of topics, or ask the server for new ones.

        Returns True when generation was enqueued (the caller should poll),
        False when an existing page was fetched.

        Raises:
            TopicLimitReachedError: the subject already holds the maximum.
        """
        page = self._pages.get(subject_id)
        loaded = len(page.topics) if page else 0
        total = page.pagination.total_topics if page else 0

        if loaded >= total:
            if loaded >= self._max_topics:
                raise TopicLimitReachedError(subject_id, self._max_topics)
            await self._backend.generate_more_topics(subject_id)
            logger.info(f"Requested more topics for {subject_id} ({loaded}/{self._max_topics})")
            return True

        next_page = (page.pagination.page + 1) if page else 1
        pages = await self._backend.get_topics([subject_id], next_page, self._page_size)
        fetched = pages.get(subject_id)
        if fetched is not None and not fetched.is_empty:
            self.merge({subject_id: fetched})
            logger.info(f"Loaded {len(fetched.topics)} more topics for {subject_id}")
        return False

    async def load_all(self, subject_id: str) -> List[Topic]:
        """
        Fetch every remaining page of an already generated subject.

        Stops when the server's total is reached or a page brings nothing
        new; never asks for generation.
        """
        while True:
            page = self._pages.get(subject_id)
            loaded = len(page.topics) if page else 0
            if page is not None and loaded >= page.pagination.total_topics:
                break
            next_page = (page.pagination.page + 1) if page else 1
            pages = await self._backend.get_topics([subject_id], next_page, self._page_size)
            fetched = pages.get(subject_id)
            if fetched is None or fetched.is_empty:
                break
            self.merge({subject_id: fetched})
            if len(self.topics_for(subject_id)) == loaded:
                break
        return self.topics_for(subject_id)
