"""
services/test_engine.py

Test session state machine.

    SETUP → GENERATING → IN_PROGRESS → {SUBMITTING, EXPIRED}
    EXPIRED → SUBMITTING → COMPLETE

Every state change goes through ``_transition()``, which also owns the
countdown side effects (arm on entering IN_PROGRESS, pause/cancel on leaving
it, stop on COMPLETE). The engine never renders anything: the presentation
layer subscribes to its events. A retake uses a fresh engine instance.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, FrozenSet, Optional, Set

import config
from practice_engine.clock import Clock, SystemClock
from practice_engine.errors import (
    BackendError,
    InvalidTransitionError,
    PaymentRequiredError,
    SubmissionError,
    TestStartError,
)
from practice_engine.models.events import (
    AccessDeniedEvent,
    AccessDeniedReason,
    EngineEvent,
    StateChangedEvent,
    SubmissionErrorEvent,
    SubmissionResultEvent,
    TimerExpiredEvent,
    TimerTickEvent,
)
from practice_engine.models.result_model import CompiledResult
from practice_engine.models.session_state import (
    AccessStatus,
    EngineSnapshot,
    EngineState,
    QuestionStatus,
    TestSession,
)
from practice_engine.models.test_config import TestConfig
from practice_engine.services import access_gate, result_compiler
from practice_engine.services.answer_ledger import AnswerLedger
from practice_engine.services.backend import PracticeBackend
from practice_engine.services.countdown_timer import CountdownTimer, is_warning
from practice_engine.services.event_bus import EventEmitter

logger = logging.getLogger(__name__)

_TRANSITIONS: Dict[EngineState, FrozenSet[EngineState]] = {
    EngineState.SETUP: frozenset({EngineState.GENERATING}),
    EngineState.GENERATING: frozenset({EngineState.IN_PROGRESS, EngineState.SETUP}),
    EngineState.IN_PROGRESS: frozenset({EngineState.SUBMITTING, EngineState.EXPIRED}),
    EngineState.EXPIRED: frozenset({EngineState.SUBMITTING}),
    EngineState.SUBMITTING: frozenset(
        {EngineState.COMPLETE, EngineState.IN_PROGRESS, EngineState.EXPIRED}
    ),
    EngineState.COMPLETE: frozenset(),
}


class TestSessionEngine:
    """
    Owns one test attempt from configuration to compiled result.

    Args:
        backend:       practice API collaborator.
        clock:         wall clock; time spent is always a clock delta.
        drive_timer:   run the countdown as an asyncio task. Tests may turn
                       this off and call ``timer.tick()`` themselves.
        tick_interval: seconds between countdown ticks.
        sleep:         awaitable sleep used by the countdown task.
    """
    __test__ = False

    def __init__(
        self,
        backend: PracticeBackend,
        clock: Optional[Clock] = None,
        drive_timer: bool = True,
        tick_interval: float = config.TIMER_TICK_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self._clock = clock or SystemClock()
        self._events = EventEmitter()
        self._drive_timer = drive_timer
        self._tick_interval = tick_interval
        self._sleep = sleep

        self._state = EngineState.SETUP
        self._config: Optional[TestConfig] = None
        self._session: Optional[TestSession] = None
        self._ledger: Optional[AnswerLedger] = None
        self._access = AccessStatus.no_access()
        self._current_index = 0
        self._started_at: Optional[float] = None
        self._finished_at: Optional[float] = None
        self._result: Optional[CompiledResult] = None

        self._timer = CountdownTimer(
            clock=self._clock,
            on_tick=self._on_timer_tick,
            on_expire=self._on_timer_expired,
        )
        self._timer_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    # ── read-only state ──────────────────────────────────────────────────────

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def config(self) -> Optional[TestConfig]:
        return self._config

    @property
    def session(self) -> Optional[TestSession]:
        return self._session

    @property
    def ledger(self) -> Optional[AnswerLedger]:
        return self._ledger

    @property
    def access_status(self) -> AccessStatus:
        return self._access

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def result(self) -> Optional[CompiledResult]:
        return self._result

    @property
    def timer(self) -> CountdownTimer:
        return self._timer

    @property
    def free_question_limit(self) -> int:
        return access_gate.resolve_free_limit(self._session, self._access)

    def subscribe(self, listener: Callable[[EngineEvent], None]) -> Callable[[], None]:
        return self._events.subscribe(listener)

    def elapsed_seconds(self) -> int:
        """Wall-clock seconds since the session started (frozen once complete)."""
        if self._started_at is None:
            return 0
        end = self._finished_at if self._finished_at is not None else self._clock.now()
        return max(0, int(end - self._started_at))

    # ── SETUP → GENERATING → IN_PROGRESS ─────────────────────────────────────

    async def start_test(self, test_config: TestConfig) -> TestSession:
        """
        Request a session for ``test_config`` and start the countdown.

        Raises:
            InvalidTransitionError: engine is not in SETUP.
            TestStartError:         the session could not be created; the
                                    engine is back in SETUP with nothing kept.
        """
        if self._state is not EngineState.SETUP:
            raise InvalidTransitionError("start a test", self._state)

        self._transition(EngineState.GENERATING)
        self._config = test_config

        try:
            await self.refresh_access_status()
            session = await self._backend.start_test(test_config)
        except asyncio.CancelledError:
            self._abort_start()
            raise
        except Exception as e:
            self._abort_start()
            logger.warning(f"Failed to start test: {e}")
            raise TestStartError(str(e) or "Failed to start test", cause=e) from e

        if not session.questions:
            self._abort_start()
            raise TestStartError("No questions available for selected criteria")

        self._session = session
        self._ledger = AnswerLedger(session.question_count)
        self._current_index = 0
        self._started_at = self._clock.now()
        self._transition(EngineState.IN_PROGRESS)
        logger.info(
            f"Test {session.id} started: {session.question_count} questions, "
            f"{session.duration_minutes} min"
        )
        return session

    def _abort_start(self) -> None:
        self._config = None
        self._session = None
        self._ledger = None
        self._transition(EngineState.SETUP)

    # ── access status ────────────────────────────────────────────────────────

    async def refresh_access_status(self) -> AccessStatus:
        """Re-fetch access; a failure is treated as "no access"."""
        try:
            status = await self._backend.get_access_status()
        except BackendError as e:
            logger.warning(f"Access status unavailable, assuming no access: {e}")
            status = AccessStatus.no_access()
        self._access = status
        return status

    def update_access_status(self, status: AccessStatus) -> None:
        self._access = status

    # ── IN_PROGRESS: ledger and navigation ───────────────────────────────────

    def answer(self, index: int, option_index: int) -> None:
        """Record an answer. Never gated: only navigation is."""
        self._require_in_progress("answer")
        options = self._session.questions[self._checked_index(index)].options
        if not (0 <= option_index < len(options)):
            raise ValueError(f"option_index {option_index} outside [0, {len(options)})")
        self._ledger.set_answer(index, option_index)

    def clear_answer(self, index: int) -> None:
        self._require_in_progress("clear an answer")
        self._ledger.clear_answer(index)

    def toggle_flag(self, index: int) -> bool:
        self._require_in_progress("flag a question")
        return self._ledger.toggle_flag(index)

    def toggle_bookmark(self, index: int) -> bool:
        self._require_in_progress("bookmark a question")
        return self._ledger.toggle_bookmark(index)

    def navigate(self, index: int) -> bool:
        """
        Move to question ``index`` (clamped to the session).

        Returns False and emits AccessDeniedEvent, leaving the engine
        untouched, when the free-tier gate refuses the index.
        """
        self._require_in_progress("navigate")
        index = max(0, min(index, self._session.question_count - 1))
        limit = self.free_question_limit
        if not access_gate.allows(self._access, index, limit, self._clock.utcnow()):
            logger.info(f"Navigation to question {index} blocked (free limit {limit})")
            self._emit(
                AccessDeniedEvent(
                    reason=AccessDeniedReason.NAVIGATION,
                    requested_index=index,
                    free_question_limit=limit,
                )
            )
            return False
        self._current_index = index
        return True

    def next_question(self) -> bool:
        return self.navigate(self._current_index + 1)

    def previous_question(self) -> bool:
        return self.navigate(self._current_index - 1)

    # ── submission ───────────────────────────────────────────────────────────

    async def submit(self) -> Optional[CompiledResult]:
        """
        Submit every answer and compile the result.

        Returns None without a network call when a submission is already in
        flight, or when access is denied (an AccessDeniedEvent is emitted).

        Raises:
            InvalidTransitionError: nothing to submit in the current state.
            SubmissionError:        the call failed; the engine is back in
                                    the state it was in, answers untouched.
        """
        if self._state is EngineState.SUBMITTING:
            logger.info("Submission already in flight, ignoring submit()")
            return None
        if self._state not in (EngineState.IN_PROGRESS, EngineState.EXPIRED):
            raise InvalidTransitionError("submit", self._state)

        previous = self._state
        if not access_gate.allows_submission(self._access, self._clock.utcnow()):
            self._deny_submission(previous)
            return None

        payload = result_compiler.build_payload(
            self._session, self._ledger, self.elapsed_seconds()
        )
        self._transition(EngineState.SUBMITTING)

        try:
            response = await self._backend.submit_test(payload)
        except asyncio.CancelledError:
            self._transition(previous)
            raise
        except PaymentRequiredError:
            self._transition(previous)
            self._deny_submission(previous)
            return None
        except Exception as e:
            self._transition(previous)
            message = str(e) or "Failed to submit test"
            logger.warning(f"Submission of test {self._session.id} failed: {message}")
            self._emit(SubmissionErrorEvent(message=message, restored_state=previous))
            raise SubmissionError(message, cause=e) from e

        self._finished_at = self._clock.now()
        self._result = result_compiler.compile_result(self._session, self._ledger, response)
        self._transition(EngineState.COMPLETE)
        logger.info(
            f"Test {self._session.id} complete: score {self._result.result.score} "
            f"in {payload.time_spent_seconds}s"
        )
        self._emit(SubmissionResultEvent(result=self._result))
        return self._result

    def _deny_submission(self, state: EngineState) -> None:
        reason = (
            AccessDeniedReason.TIMER_EXPIRED
            if state is EngineState.EXPIRED
            else AccessDeniedReason.SUBMISSION
        )
        logger.info(f"Submission blocked without full access ({reason.value})")
        self._emit(
            AccessDeniedEvent(reason=reason, free_question_limit=self.free_question_limit)
        )

    async def _auto_submit(self) -> None:
        if self._state is not EngineState.EXPIRED:
            # The user submitted before the scheduled task got to run.
            return
        try:
            await self.submit()
        except SubmissionError as e:
            # Already reported through SubmissionErrorEvent; the user may retry.
            logger.warning(f"Automatic submission failed: {e}")

    # ── COMPLETE ─────────────────────────────────────────────────────────────

    async def download_pdf(self) -> bytes:
        """
        Download the result PDF (paid feature).

        Raises:
            InvalidTransitionError: no completed result yet.
            PaymentRequiredError:   no full access; AccessDeniedEvent emitted.
            BackendError:           any other download failure.
        """
        if self._state is not EngineState.COMPLETE or self._result is None:
            raise InvalidTransitionError("download a PDF", self._state)
        if not access_gate.has_full_access(self._access, self._clock.utcnow()):
            self._emit(AccessDeniedEvent(reason=AccessDeniedReason.DOWNLOAD))
            raise PaymentRequiredError("Payment required to download PDF")
        if not self._result.result.id:
            raise BackendError("Test result has no id to download")
        try:
            return await self._backend.download_test_pdf(self._result.result.id)
        except PaymentRequiredError:
            self._emit(AccessDeniedEvent(reason=AccessDeniedReason.DOWNLOAD))
            raise

    # ── countdown ────────────────────────────────────────────────────────────

    def _on_timer_tick(self, remaining: int) -> None:
        total = self._timer.total_seconds
        self._emit(
            TimerTickEvent(
                remaining_seconds=remaining,
                total_seconds=total,
                is_warning=is_warning(remaining, total),
            )
        )

    def _on_timer_expired(self) -> None:
        if self._state is not EngineState.IN_PROGRESS:
            logger.info(f"Ignoring timer expiry in state {self._state.value}")
            return
        self._transition(EngineState.EXPIRED)
        self._emit(TimerExpiredEvent())

        if access_gate.allows_submission(self._access, self._clock.utcnow()):
            logger.info("Time is up, submitting automatically")
            self._spawn(self._auto_submit())
        else:
            self._deny_submission(EngineState.EXPIRED)

    def _start_timer_task(self) -> None:
        if not self._drive_timer:
            return
        self._cancel_timer_task()
        self._timer_task = asyncio.get_running_loop().create_task(
            self._timer.run(self._tick_interval, self._sleep)
        )

    def _cancel_timer_task(self) -> None:
        task, self._timer_task = self._timer_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_until_settled(self) -> None:
        """Await background work (an automatic submission) started by the engine."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── transitions ──────────────────────────────────────────────────────────

    def _transition(self, target: EngineState) -> None:
        previous = self._state
        if target not in _TRANSITIONS[previous]:
            raise InvalidTransitionError(f"move to {target.value}", previous)

        if previous is EngineState.IN_PROGRESS:
            # No tick or expiry may be delivered outside IN_PROGRESS.
            self._timer.pause()
            self._cancel_timer_task()

        self._state = target

        if target is EngineState.IN_PROGRESS:
            if previous is EngineState.GENERATING:
                self._timer.start(self._session.total_seconds)
            else:
                self._timer.resume()
            if self._timer.is_running:
                self._start_timer_task()
        elif target is EngineState.COMPLETE:
            self._timer.stop()

        logger.debug(f"Engine state {previous.value} -> {target.value}")
        self._emit(StateChangedEvent(previous=previous, current=target))

    def _require_in_progress(self, action: str) -> None:
        if self._state is not EngineState.IN_PROGRESS:
            raise InvalidTransitionError(action, self._state)

    def _checked_index(self, index: int) -> int:
        # Delegate the range check to the ledger so the message is uniform.
        self._ledger.answer_for(index)
        return index

    def _emit(self, event: EngineEvent) -> None:
        self._events.emit(event)

    # ── view model / teardown ────────────────────────────────────────────────

    def snapshot(self) -> EngineSnapshot:
        session = self._session
        if session is None or self._ledger is None:
            return EngineSnapshot(state=self._state)

        now = self._clock.utcnow()
        limit = self.free_question_limit
        palette = []
        for i in range(session.question_count):
            if i == self._current_index:
                palette.append(QuestionStatus.CURRENT)
            elif not access_gate.allows(self._access, i, limit, now):
                palette.append(QuestionStatus.LOCKED)
            elif self._ledger.is_flagged(i):
                palette.append(QuestionStatus.FLAGGED)
            elif self._ledger.answer_for(i) is not None:
                palette.append(QuestionStatus.ANSWERED)
            else:
                palette.append(QuestionStatus.UNANSWERED)

        remaining = self._timer.remaining_seconds
        return EngineSnapshot(
            state=self._state,
            session_id=session.id,
            current_index=self._current_index,
            question_count=session.question_count,
            question=session.questions[self._current_index],
            answers=self._ledger.answers,
            flagged=sorted(self._ledger.flagged),
            bookmarked=sorted(self._ledger.bookmarked),
            summary=self._ledger.summary(),
            palette=palette,
            remaining_seconds=remaining,
            total_seconds=self._timer.total_seconds,
            is_warning=is_warning(remaining, self._timer.total_seconds),
            elapsed_seconds=self.elapsed_seconds(),
            free_question_limit=None if access_gate.has_full_access(self._access, now) else limit,
            has_full_access=access_gate.has_full_access(self._access, now),
        )

    def dispose(self) -> None:
        """Stop the countdown and cancel background tasks. Idempotent."""
        self._timer.stop()
        self._cancel_timer_task()
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
