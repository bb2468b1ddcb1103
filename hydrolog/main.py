"""Hydro Plant Log web application."""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from hydrolog.core.config import settings
from hydrolog.core.database import create_db_and_tables
from hydrolog.core.scheduler import shutdown_scheduler, start_scheduler
from hydrolog.logbook.errors import (
    AlreadySubmitted,
    DuplicateKey,
    GateClosed,
    IncompleteDay,
    InvalidIssue,
    LogbookError,
    NetworkFailure,
    PermissionDenied,
    RangeViolation,
    StaleWrite,
)
from hydrolog.routes import checklists, clock, gate, issues, logs, realtime, tools

# Configure logging
log_dir = Path.home() / settings.log_dir
log_dir.mkdir(parents=True, exist_ok=True)
log_file = log_dir / "latest.log"

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    filename=str(log_file),
)
logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS = (
    (RangeViolation, 422),
    (InvalidIssue, 422),
    (AlreadySubmitted, 409),
    (DuplicateKey, 409),
    (StaleWrite, 409),
    (PermissionDenied, 403),
    (GateClosed, 403),
    (IncompleteDay, 400),
    (NetworkFailure, 503),
)


def status_for(exc: LogbookError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""
    # Startup
    logger.info(f"Starting {settings.app_name} for {settings.plant_name}")
    create_db_and_tables()
    start_scheduler()
    yield
    # Shutdown
    shutdown_scheduler()
    logger.info(f"{settings.app_name} shut down")


app = FastAPI(
    title=settings.app_name,
    description="Collective hourly log sheets, daily checklists and issue tracking for a hydro plant",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS for control-room tablets
origins = (
    ["*"]
    if settings.allowed_origins == "*"
    else [o.strip() for o in settings.allowed_origins.split(",")]
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(clock.router)
app.include_router(logs.router)
app.include_router(checklists.router)
app.include_router(gate.router)
app.include_router(issues.router)
app.include_router(tools.router)
app.include_router(realtime.router)


@app.exception_handler(LogbookError)
async def logbook_error(request: Request, exc: LogbookError):
    """Refusals from the log-entry engine become client errors."""
    status_code = status_for(exc)
    detail: dict = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, RangeViolation):
        detail["fields"] = [
            {"field": v.field, "message": v.message, "value": v.value} for v in exc.violations
        ]
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} refused ({status_code}): {exc}")
    return JSONResponse(status_code=status_code, content=detail)


@app.get("/")
async def root(request: Request):
    """Redirect root to the plant clock."""
    rp = request.scope.get("root_path", "")
    return RedirectResponse(f"{rp}/clock")


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "app": settings.app_name}
