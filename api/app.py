"""
api/app.py

FastAPI app instance + session middleware
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

import api.session as session
import config
from api.routes import router
from practice_engine.clock import Clock
from practice_engine.models.session_state import Role
from practice_engine.services.backend import PracticeBackend
from practice_engine.services.http_backend import HttpPracticeBackend

logger = logging.getLogger(__name__)

SESSION_COOKIE = "practice_session"

BackendFactory = Callable[[str, Role], PracticeBackend]


def _http_backend(token: str, role: Role) -> PracticeBackend:
    return HttpPracticeBackend(config.API_BASE_URL, token=token, role=role)


async def _cleanup_loop() -> None:
    # Periodically drop expired sessions (every SESSION_CLEANUP_INTERVAL seconds)
    while True:
        await asyncio.sleep(config.SESSION_CLEANUP_INTERVAL)
        removed = session.cleanup_expired()
        if removed:
            logger.info(f"Removed {removed} expired sessions")


@asynccontextmanager
async def _lifespan(app: FastAPI):
    task = asyncio.create_task(_cleanup_loop())
    try:
        yield
    finally:
        task.cancel()
        session.clear_all()


def create_app(
    backend_factory: Optional[BackendFactory] = None,
    clock: Optional[Clock] = None,
    poll_attempts: int = config.POLL_MAX_ATTEMPTS,
    poll_interval: float = config.POLL_INTERVAL_SECONDS,
) -> FastAPI:
    """
    Args:
        backend_factory: builds the practice API client for a session from
                         its bearer token and role (default: HTTP client).
        clock:           clock handed to every test engine (default: system).
        poll_attempts:   topic generation poll budget per request.
        poll_interval:   seconds between topic poll rounds.
    """
    app = FastAPI(title="Practice Test", docs_url=None, redoc_url=None, lifespan=_lifespan)
    app.state.backend_factory = backend_factory or _http_backend
    app.state.clock = clock
    app.state.poll_attempts = poll_attempts
    app.state.poll_interval = poll_interval

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Session middleware: read the session id from the cookie, issue a new one if missing
    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        sid = request.cookies.get(SESSION_COOKIE)
        if not sid or session.get_session(sid) is None:
            sid = session.create_session()

        request.state.session_id = sid
        response: Response = await call_next(request)
        response.set_cookie(
            key=SESSION_COOKIE,
            value=sid,
            httponly=True,
            samesite="lax",
            max_age=session.SESSION_TTL,
        )
        return response

    app.include_router(router)
    return app
