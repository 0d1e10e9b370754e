"""
services/http_backend.py

PracticeBackend over the practice REST API.

The API wraps every JSON answer as ``{success, message, data, meta}``;
payment refusals carry ``meta.requiresPayment``. Calls are blocking
``requests`` calls pushed to a worker thread so the event loop keeps
driving timers while a request is in flight.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests
from pydantic import ValidationError

import config
from practice_engine.errors import BackendError, BackendUnavailableError, PaymentRequiredError
from practice_engine.models.catalog import Subject, TopicPage
from practice_engine.models.result_model import SubmissionPayload, SubmissionResponse
from practice_engine.models.session_state import AccessStatus, Role, TestSession
from practice_engine.models.test_config import TestConfig

logger = logging.getLogger(__name__)


class HttpPracticeBackend:
    """
    Args:
        base_url: API root, e.g. ``https://host/api``.
        token:    bearer token issued by the auth service (may be empty).
        role:     role of the signed-in user, as reported by the auth service.
        timeout:  per-request timeout in seconds.
        session:  optional ``requests.Session`` (connection reuse, tests).
    """

    def __init__(
        self,
        base_url: str = config.API_BASE_URL,
        token: str = "",
        role: Role = Role.USER,
        timeout: float = config.API_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._role = role
        self._timeout = timeout
        self._http = session or requests.Session()
        self._http.headers.update({"Content-Type": "application/json"})
        if token:
            self._http.headers["Authorization"] = f"Bearer {token}"

    # ── PracticeBackend ──────────────────────────────────────────────────────

    async def list_subjects(self) -> List[Subject]:
        data = await self._call("GET", "/practice/subjects")
        return [self._parse(Subject, item) for item in (data or [])]

    async def get_topics(
        self, subject_ids: Sequence[str], page: int, page_size: int
    ) -> Dict[str, TopicPage]:
        data = await self._call(
            "POST",
            "/practice/topics",
            json={"subjectIds": list(subject_ids), "page": page, "limit": page_size},
        )
        pages: Dict[str, TopicPage] = {}
        for subject_id, raw in (data or {}).items():
            raw = dict(raw or {})
            raw["subjectId"] = subject_id
            pagination = dict(raw.get("pagination") or {})
            pagination.setdefault("pageSize", page_size)
            raw["pagination"] = pagination
            pages[subject_id] = self._parse(TopicPage, raw)
        return pages

    async def generate_more_topics(self, subject_id: str) -> None:
        await self._call("POST", "/practice/topics/generate", json={"subjectId": subject_id})

    async def start_test(self, test_config: TestConfig) -> TestSession:
        data = await self._call("POST", "/practice/start", json=test_config.to_request())
        if not data:
            raise BackendError("Invalid response from server")
        return self._parse(TestSession, data)

    async def get_access_status(self) -> AccessStatus:
        data = await self._call("GET", "/payments/status")
        raw = dict(data or {})
        raw["role"] = self._role.value
        return self._parse(AccessStatus, raw)

    async def submit_test(self, payload: SubmissionPayload) -> SubmissionResponse:
        data = await self._call("POST", "/practice/submit", json=payload.to_request())
        if not data:
            raise BackendError("Invalid response from server")
        return self._parse(SubmissionResponse, data)

    async def download_test_pdf(self, test_id: str) -> bytes:
        response = await self._send("GET", f"/practice/download/{test_id}")
        return response.content

    # ── transport ────────────────────────────────────────────────────────────

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._send(method, path, **kwargs)
        try:
            body = response.json()
        except ValueError as e:
            raise BackendError(f"Malformed response from {path}", response.status_code) from e
        if isinstance(body, dict) and body.get("success") is False:
            raise BackendError(body.get("message") or "Request failed", response.status_code)
        return body.get("data") if isinstance(body, dict) else body

    async def _send(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self._base_url}{path}"
        try:
            response = await asyncio.to_thread(
                self._http.request, method, url, timeout=self._timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise BackendUnavailableError(f"Network error calling {path}") from e

        if response.ok:
            return response

        message, requires_payment = _error_details(response)
        logger.info(f"{method} {path} -> {response.status_code}: {message}")
        if requires_payment:
            raise PaymentRequiredError(message, response.status_code)
        raise BackendError(message, response.status_code)

    @staticmethod
    def _parse(model: Any, raw: Any) -> Any:
        try:
            return model.model_validate(raw)
        except ValidationError as e:
            raise BackendError(f"Unexpected {model.__name__} payload: {e}") from e


def _error_details(response: requests.Response) -> Tuple[str, bool]:
    """Extract the server message and the requiresPayment flag, if any."""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}", False
    if not isinstance(body, dict):
        return f"HTTP {response.status_code}", False
    meta = body.get("meta") or {}
    requires_payment = bool(body.get("requiresPayment") or meta.get("requiresPayment"))
    message = body.get("message") or meta.get("message") or f"HTTP {response.status_code}"
    return message, requires_payment
