"""FastAPI entrypoint for the timed exam session service."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from exam_core.config import get_settings
from exam_core.database import create_db_and_tables, session_factory
from exam_core.errors import ExamSessionError
from exam_core.routers import exam_session as exam_session_router_module
from exam_core.routers import grading as grading_router_module
from exam_core.scheduler import DeadlineScheduler

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Online Examination: Timed Session Service")

app.state.scheduler = DeadlineScheduler(session_factory)


@app.exception_handler(ExamSessionError)
async def exam_session_error_handler(request: Request, exc: ExamSessionError):
    """Report domain errors as JSON with the error's own status code."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


# Session middleware for cookie-based identity set by the auth service
app.add_middleware(SessionMiddleware, secret_key=settings.secret_key)

# Routers
app.include_router(exam_session_router_module.router, tags=["exam-session"])
app.include_router(grading_router_module.router, tags=["grading"])


@app.on_event("startup")
def on_startup():
    """Create tables and rebuild deadline timers from persisted sessions."""
    create_db_and_tables()
    app.state.scheduler.reconcile()


@app.on_event("shutdown")
def on_shutdown():
    app.state.scheduler.shutdown()
