"""
services/backend.py

Collaborator interface the engine consumes. Transport and wire format are
the implementation's concern (see http_backend.py); the engine only sees
these coroutines and the models they return.
"""

from typing import Dict, List, Protocol, Sequence

from practice_engine.models.catalog import Subject, TopicPage
from practice_engine.models.result_model import SubmissionPayload, SubmissionResponse
from practice_engine.models.session_state import AccessStatus, TestSession
from practice_engine.models.test_config import TestConfig


class PracticeBackend(Protocol):
    async def list_subjects(self) -> List[Subject]:
        ...

    async def get_topics(
        self, subject_ids: Sequence[str], page: int, page_size: int
    ) -> Dict[str, TopicPage]:
        """An empty page is not an error."""
        ...

    async def generate_more_topics(self, subject_id: str) -> None:
        """Enqueue server-side topic generation; returns once acknowledged."""
        ...

    async def start_test(self, test_config: TestConfig) -> TestSession:
        ...

    async def get_access_status(self) -> AccessStatus:
        ...

    async def submit_test(self, payload: SubmissionPayload) -> SubmissionResponse:
        ...

    async def download_test_pdf(self, test_id: str) -> bytes:
        """Raises PaymentRequiredError when the server demands payment."""
        ...
