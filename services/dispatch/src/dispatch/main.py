import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from services.dispatch.src.dispatch.config import settings
from services.dispatch.src.dispatch.core.errors import (
    AssignmentConflict,
    CommentRequired,
    DispatchError,
    IllegalTransition,
    InvalidIntake,
    InvalidRating,
    IssueLocked,
    IssueNotFound,
    NoEligibleWorker,
    NotAssignedWorker,
    StaleIssue,
    WorkerNotFound,
    WorkerOnCooldown,
    WorkerUnavailable,
)
from services.dispatch.src.dispatch.routes import api_router

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[DispatchError], int] = {
    IssueNotFound: 404,
    WorkerNotFound: 404,
    IssueLocked: 409,
    IllegalTransition: 409,
    WorkerOnCooldown: 409,
    WorkerUnavailable: 409,
    AssignmentConflict: 409,
    StaleIssue: 409,
    NoEligibleWorker: 409,
    NotAssignedWorker: 409,
    CommentRequired: 422,
    InvalidRating: 422,
    InvalidIntake: 422,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and start the SLA monitor on startup."""
    from services.dispatch.src.dispatch.db.engine import get_engine, init_db

    engine = get_engine()
    if os.getenv("RUN_MIGRATIONS", "true").lower() == "true":
        init_db(engine)

    monitor = None
    if settings.run_sla_monitor:
        from services.dispatch.src.dispatch.core.engine import DispatchEngine

        monitor = DispatchEngine.from_settings(engine).monitor
        monitor.start()

    yield

    if monitor is not None:
        monitor.stop()


app = FastAPI(title="Civic Issue Dispatch API", lifespan=lifespan)

# CORS for frontend
cors_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
]

if settings.cors_origin:
    cors_origins.append(settings.cors_origin)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    status = ERROR_STATUS.get(type(exc), 400)
    logger.info("dispatch_error", extra={
        "path": request.url.path, "error": exc.code, "status_code": status,
    })
    return JSONResponse(status_code=status, content={"detail": exc.to_dict()})


# Include API routes
app.include_router(api_router)


@app.get("/")
def root() -> dict[str, str]:
    return {"service": "civic-issue-dispatch-api", "docs": "/docs"}


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
