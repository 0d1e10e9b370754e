"""
models/catalog.py

Subjects and paginated topics served by the practice API.
Subjects are immutable once fetched; a TopicPage only ever grows.
"""

from __future__ import annotations

from typing import Any, List

from pydantic import AliasChoices, Field, model_validator

import config
from practice_engine.models.base import ApiModel


class Subject(ApiModel):
    id: str
    name: str
    topic_count: int = Field(default=0, ge=0)
    question_count: int = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def flatten_counts(cls, data: Any) -> Any:
        """The API nests counts as ``_count: {topics, questions}``."""
        if isinstance(data, dict) and isinstance(data.get("_count"), dict):
            counts = data["_count"]
            data = {k: v for k, v in data.items() if k != "_count"}
            data.setdefault("topicCount", counts.get("topics", 0))
            data.setdefault("questionCount", counts.get("questions", 0))
        return data


class Topic(ApiModel):
    id: str
    subject_id: str
    name: str


class TopicPagination(ApiModel):
    total_topics: int = Field(default=0, ge=0)
    page: int = Field(
        default=1,
        ge=1,
        validation_alias=AliasChoices("page", "currentPage"),
    )
    page_size: int = Field(default=config.TOPIC_PAGE_SIZE, ge=1)
    total_pages: int = Field(default=0, ge=0)
    has_more: bool = False


class TopicPage(ApiModel):
    """Topics loaded so far for one subject."""

    subject_id: str
    subject_name: str = ""
    topics: List[Topic] = Field(default_factory=list)
    pagination: TopicPagination = Field(default_factory=TopicPagination)

    @property
    def is_empty(self) -> bool:
        return not self.topics

    @property
    def topic_ids(self) -> List[str]:
        return [t.id for t in self.topics]

    def merged_with(self, newer: "TopicPage") -> "TopicPage":
        """
        Append the topics of a newer page that are not already present.

        The result never holds fewer topics than self, whatever the newer
        page contains. Pagination follows the newer page, except that the
        page number never moves backwards.
        """
        known = {t.id for t in self.topics}
        topics = list(self.topics) + [t for t in newer.topics if t.id not in known]
        pagination = newer.pagination.model_copy(
            update={"page": max(self.pagination.page, newer.pagination.page)}
        )
        return TopicPage(
            subject_id=self.subject_id,
            subject_name=newer.subject_name or self.subject_name,
            topics=topics,
            pagination=pagination,
        )
