"""
api/routes.py

FastAPI endpoints

Thin presentation bridge over the practice engine. Every endpoint works on
the workspace of the caller's cookie session; engine errors are mapped to
HTTP status codes in ``_to_http``.
"""

import asyncio
import logging
from collections import deque
from typing import Any, List, Literal, Optional

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel, Field

import api.session as session
from practice_engine.errors import (
    BackendError,
    InvalidTransitionError,
    PaymentRequiredError,
    PollCancelledError,
    PollTimeoutError,
    PracticeEngineError,
    SubmissionError,
    TestStartError,
    TopicLimitReachedError,
)
from practice_engine.models.catalog import TopicPage
from practice_engine.models.events import EngineEvent
from practice_engine.models.session_state import EngineState, Role
from practice_engine.models.test_config import TestSelection
from practice_engine.services.config_builder import TestConfigBuilder
from practice_engine.services.countdown_timer import format_clock
from practice_engine.services.test_engine import TestSessionEngine
from practice_engine.services.topic_catalog import TopicCatalog
from practice_engine.services.topic_poller import CancellationToken, TopicGenerationPoller

logger = logging.getLogger(__name__)

router = APIRouter()

# ── Pydantic request bodies ──────────────────────────────────────────────────

class TokenBody(BaseModel):
    token: str
    role: Role = Role.USER

class TopicsBody(BaseModel):
    subject_ids: List[str] = Field(default_factory=list)
    wait: bool = False

class MoreTopicsBody(BaseModel):
    subject_id: str
    wait: bool = False

class AnswerBody(BaseModel):
    index: int
    option_index: Optional[int] = None   # None clears the answer

class IndexBody(BaseModel):
    index: int

class NavigateBody(BaseModel):
    index: Optional[int] = None
    direction: Optional[Literal["next", "previous"]] = None


# ── helpers ──────────────────────────────────────────────────────────────────

def _to_http(e: PracticeEngineError) -> HTTPException:
    if isinstance(e, PaymentRequiredError):
        return HTTPException(status_code=402, detail=str(e))
    if isinstance(e, PollTimeoutError):
        return HTTPException(
            status_code=504,
            detail={"message": str(e), "unresolved": sorted(e.unresolved)},
        )
    if isinstance(e, (SubmissionError, TestStartError, BackendError)):
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, TopicLimitReachedError):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


def _workspace(request: Request) -> dict[str, Any]:
    sid = request.state.session_id
    state = session.get_session(sid)
    if state is None:
        raise HTTPException(status_code=404, detail="Session expired. Please reload the page.")
    return state


def _backend(request: Request, state: dict[str, Any]):
    if state["backend"] is None:
        factory = request.app.state.backend_factory
        state["backend"] = factory(state["token"], state["role"])
    return state["backend"]


def _catalog(request: Request, state: dict[str, Any]) -> TopicCatalog:
    if state["catalog"] is None:
        state["catalog"] = TopicCatalog(_backend(request, state))
    return state["catalog"]


def _engine(state: dict[str, Any]) -> TestSessionEngine:
    engine = state["engine"]
    if engine is None:
        raise HTTPException(status_code=404, detail="No test session.")
    return engine


def _page_to_dict(page: Optional[TopicPage]) -> Optional[dict]:
    if page is None:
        return None
    return page.model_dump(mode="json")


def _catalog_view(state: dict[str, Any], subject_ids: List[str]) -> dict:
    catalog: TopicCatalog = state["catalog"]
    return {
        "pages": {sid: _page_to_dict(catalog.page(sid)) for sid in subject_ids},
        "pending": catalog.pending_subjects(subject_ids),
        "polling": sorted(sid for sid in subject_ids if sid in state["polls"]),
        "poll_errors": {
            sid: message for sid, message in state["poll_errors"].items() if sid in subject_ids
        },
    }


async def _poll_subject(
    app_state: Any,
    state: dict[str, Any],
    subject_id: str,
    token: CancellationToken,
    baseline: Optional[dict] = None,
) -> None:
    events: deque = state["events"]
    poller = TopicGenerationPoller(
        state["catalog"],
        on_progress=lambda event: events.append(event.model_dump(mode="json")),
    )
    try:
        await poller.poll_until_ready(
            [subject_id],
            max_attempts=app_state.poll_attempts,
            interval=app_state.poll_interval,
            token=token,
            baseline=baseline,
        )
    finally:
        # A newer poll for the same subject may already have replaced this one.
        poll = state["polls"].get(subject_id)
        if poll is not None and poll["token"] is token:
            del state["polls"][subject_id]


async def _poll_in_background(
    app_state: Any,
    state: dict[str, Any],
    subject_id: str,
    token: CancellationToken,
    baseline: Optional[dict] = None,
) -> None:
    try:
        await _poll_subject(app_state, state, subject_id, token, baseline)
    except PollCancelledError:
        logger.info(f"Topic polling cancelled for {subject_id}")
    except PollTimeoutError as e:
        state["poll_errors"][subject_id] = str(e)


async def _start_poll(
    request: Request,
    state: dict[str, Any],
    subject_ids: List[str],
    wait: bool,
    baseline: Optional[dict] = None,
) -> None:
    """
    Start one poll per subject, replacing only that subject's previous poll.

    With ``wait`` the request blocks until every poll has finished and the
    subjects that timed out are reported together.
    """
    app_state = request.app.state
    session.cancel_polls(state, subject_ids)
    runner = _poll_subject if wait else _poll_in_background
    tasks: dict[str, asyncio.Task] = {}
    for sid in subject_ids:
        state["poll_errors"].pop(sid, None)
        token = CancellationToken()
        floor = {sid: baseline[sid]} if baseline and sid in baseline else None
        task = asyncio.create_task(runner(app_state, state, sid, token, floor))
        state["polls"][sid] = {"token": token, "task": task}
        tasks[sid] = task
    if not wait:
        return

    outcomes = await asyncio.gather(*tasks.values(), return_exceptions=True)
    unresolved: List[str] = []
    for sid, outcome in zip(tasks, outcomes):
        if isinstance(outcome, PollTimeoutError):
            unresolved.extend(outcome.unresolved)
        elif isinstance(outcome, asyncio.CancelledError):
            raise PollCancelledError(f"topic polling was cancelled for {sid}")
        elif isinstance(outcome, BaseException):
            raise outcome
    if unresolved:
        raise PollTimeoutError(unresolved, attempts=app_state.poll_attempts)


# ── endpoints: setup ─────────────────────────────────────────────────────────

@router.post("/api/set-token")
async def set_token(body: TokenBody, request: Request):
    token = body.token.strip()
    if not token:
        raise HTTPException(status_code=400, detail="Token is empty.")
    sid = request.state.session_id
    session.reset(sid)
    session.put(sid, "token", token)
    session.put(sid, "role", body.role)
    return {"ok": True}


@router.get("/api/subjects")
async def list_subjects(request: Request):
    state = _workspace(request)
    try:
        subjects = await _catalog(request, state).load_subjects()
    except PracticeEngineError as e:
        raise _to_http(e) from e
    return {"subjects": [s.model_dump(mode="json") for s in subjects]}


@router.post("/api/topics")
async def load_topics(body: TopicsBody, request: Request):
    state = _workspace(request)
    catalog = _catalog(request, state)
    subject_ids = list(dict.fromkeys(body.subject_ids))

    # Polls of deselected subjects are dropped; the others keep running.
    deselected = [sid for sid in set(state["polls"]) | set(state["poll_errors"]) if sid not in subject_ids]
    session.cancel_polls(state, deselected)
    for sid in deselected:
        state["poll_errors"].pop(sid, None)
    catalog.forget([sid for sid in catalog.pages if sid not in subject_ids])

    try:
        pending = await catalog.load_topics(subject_ids)
        if not body.wait:
            pending = [sid for sid in pending if sid not in state["polls"]]
        if pending:
            await _start_poll(request, state, pending, body.wait)
    except PracticeEngineError as e:
        raise _to_http(e) from e
    return _catalog_view(state, subject_ids)


@router.post("/api/topics/more")
async def load_more_topics(body: MoreTopicsBody, request: Request):
    state = _workspace(request)
    catalog = _catalog(request, state)
    try:
        generating = await catalog.load_more(body.subject_id)
        if generating:
            baseline = {body.subject_id: len(catalog.topics_for(body.subject_id))}
            await _start_poll(request, state, [body.subject_id], body.wait, baseline)
    except PracticeEngineError as e:
        raise _to_http(e) from e
    view = _catalog_view(state, [body.subject_id])
    view["generating"] = generating
    return view


# ── endpoints: test ──────────────────────────────────────────────────────────

@router.post("/api/start-test")
async def start_test(body: TestSelection, request: Request):
    state = _workspace(request)
    current = state["engine"]
    if current is not None and current.state not in (EngineState.SETUP, EngineState.COMPLETE):
        raise _to_http(InvalidTransitionError("start a new test", current.state))

    catalog = _catalog(request, state)
    try:
        # An un-narrowed subject of a narrowed selection stands for all of
        # its topics, not only the pages loaded so far.
        if not body.random_topics and any(body.selected_topics.get(sid) for sid in body.subject_ids):
            for sid in body.subject_ids:
                if not body.selected_topics.get(sid):
                    await catalog.load_all(sid)
        test_config = TestConfigBuilder().build(body, catalog.available_topics())
    except PracticeEngineError as e:
        raise _to_http(e) from e

    session.cancel_polls(state)
    session.dispose_engine(state)
    engine = TestSessionEngine(_backend(request, state), clock=request.app.state.clock)
    events: deque = state["events"]
    events.clear()

    def _queue(event: EngineEvent) -> None:
        events.append(event.model_dump(mode="json"))

    state["unsubscribe"] = engine.subscribe(_queue)
    state["engine"] = engine

    try:
        test_session = await engine.start_test(test_config)
    except TestStartError as e:
        session.dispose_engine(state)
        raise _to_http(e) from e

    return {
        "ok": True,
        "session_id": test_session.id,
        "name": test_session.name,
        "total": test_session.question_count,
        "duration_minutes": test_session.duration_minutes,
    }


@router.get("/api/test-state")
async def get_test_state(request: Request):
    engine = _engine(_workspace(request))
    snapshot = engine.snapshot()
    data = snapshot.model_dump(mode="json")
    data["remaining_display"] = format_clock(snapshot.remaining_seconds or 0)
    return data


@router.post("/api/answer")
async def answer(body: AnswerBody, request: Request):
    engine = _engine(_workspace(request))
    try:
        if body.option_index is None:
            engine.clear_answer(body.index)
        else:
            engine.answer(body.index, body.option_index)
    except PracticeEngineError as e:
        raise _to_http(e) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, "answered_count": engine.ledger.summary().answered_count}


@router.post("/api/flag")
async def flag(body: IndexBody, request: Request):
    engine = _engine(_workspace(request))
    try:
        flagged = engine.toggle_flag(body.index)
    except PracticeEngineError as e:
        raise _to_http(e) from e
    return {"ok": True, "flagged": flagged}


@router.post("/api/bookmark")
async def bookmark(body: IndexBody, request: Request):
    engine = _engine(_workspace(request))
    try:
        bookmarked = engine.toggle_bookmark(body.index)
    except PracticeEngineError as e:
        raise _to_http(e) from e
    return {"ok": True, "bookmarked": bookmarked}


@router.post("/api/navigate")
async def navigate(body: NavigateBody, request: Request):
    engine = _engine(_workspace(request))
    try:
        if body.direction == "next":
            allowed = engine.next_question()
        elif body.direction == "previous":
            allowed = engine.previous_question()
        elif body.index is not None:
            allowed = engine.navigate(body.index)
        else:
            raise HTTPException(status_code=400, detail="Provide an index or a direction.")
    except PracticeEngineError as e:
        raise _to_http(e) from e
    return {
        "ok": allowed,
        "index": engine.current_index,
        "requires_payment": not allowed,
    }


@router.post("/api/submit-test")
async def submit_test(request: Request):
    engine = _engine(_workspace(request))
    try:
        result = await engine.submit()
    except PracticeEngineError as e:
        raise _to_http(e) from e
    if result is None:
        if engine.state is EngineState.SUBMITTING:
            return {"ok": False, "pending": True}
        raise HTTPException(status_code=402, detail="Payment required to submit this test.")
    return {"ok": True, "score": result.result.score, "passed": result.passed}


@router.post("/api/refresh-access")
async def refresh_access(request: Request):
    state = _workspace(request)
    engine = state["engine"]
    if engine is not None:
        status = await engine.refresh_access_status()
    else:
        try:
            status = await _backend(request, state).get_access_status()
        except PracticeEngineError as e:
            raise _to_http(e) from e
    return status.model_dump(mode="json")


@router.get("/api/results")
async def get_results(request: Request):
    engine = _engine(_workspace(request))
    if engine.state is not EngineState.COMPLETE or engine.result is None:
        raise HTTPException(status_code=400, detail="The test has not been submitted yet.")
    compiled = engine.result
    data = compiled.model_dump(mode="json")
    data["time_spent_display"] = format_clock(compiled.result.time_spent_seconds)
    data["incorrect_count"] = len(compiled.incorrect_questions)
    return data


@router.get("/api/download-pdf")
async def download_pdf(request: Request):
    engine = _engine(_workspace(request))
    try:
        content = await engine.download_pdf()
    except PracticeEngineError as e:
        raise _to_http(e) from e
    filename = f"practice-test-{engine.result.result.id}.pdf"
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/api/events")
async def drain_events(request: Request):
    events: deque = _workspace(request)["events"]
    drained = list(events)
    events.clear()
    return {"events": drained}


@router.post("/api/retake")
async def retake(request: Request):
    state = _workspace(request)
    session.dispose_engine(state)
    state["events"].clear()
    return {"ok": True}


@router.post("/api/reset")
async def reset_session(request: Request):
    session.reset(request.state.session_id)
    return {"ok": True}
