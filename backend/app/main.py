"""FastAPI application, the entrypoint of the cohort chat service."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from loguru import logger

from backend.app.config import settings
from backend.app.log import configure_logging

# ---------------------------------------------------------------------------
# Logging first, so import-time log records already go through loguru.
# ---------------------------------------------------------------------------

configure_logging(settings.log_level, settings.data_dir)

# ---------------------------------------------------------------------------
# Now import everything else (after logging is configured)
# ---------------------------------------------------------------------------

from fastapi import FastAPI, Request  # noqa: E402
from fastapi.exceptions import RequestValidationError  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402
from fastapi.staticfiles import StaticFiles  # noqa: E402
from sqlalchemy import text  # noqa: E402

from backend.app.api.attachments import router as attachments_router  # noqa: E402
from backend.app.api.cohorts import router as cohorts_router  # noqa: E402
from backend.app.api.conversations import router as conversations_router  # noqa: E402
from backend.app.api.messages import router as messages_router  # noqa: E402
from backend.app.api.users import router as users_router  # noqa: E402
from backend.app.api.ws import router as ws_router  # noqa: E402
from backend.app.db import engine, init_db  # noqa: E402
from backend.app.errors import ChatError  # noqa: E402
from backend.app.services.ws_manager import ws_manager  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    await init_db()
    yield
    # Shutdown
    await ws_manager.close_all()


app = FastAPI(
    title="Cohort Chat",
    description="Cohort and direct messaging for the language school portals",
    version="0.1.0",
    lifespan=lifespan,
)

# allow_origins=["*"] + allow_credentials=True is rejected by browsers,
# so the origin list is always explicit.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Exception handlers ---


@app.exception_handler(ChatError)
async def _chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("{} on {} {}: {}", type(exc).__name__, request.method, request.url.path, exc)
    else:
        logger.debug("{} on {} {}: {}", type(exc).__name__, request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0]["msg"].removeprefix("Value error, ") if errors else "Invalid input"
    logger.debug("Invalid input on {} {}: {}", request.method, request.url.path, message)
    return JSONResponse(status_code=422, content={"detail": message})


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch unhandled exceptions and return a clean JSON 500 instead of a stack trace."""
    logger.opt(exception=exc).error(
        "Unhandled exception on {} {}", request.method, request.url.path
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Include routers
app.include_router(cohorts_router, prefix="/api")
app.include_router(conversations_router, prefix="/api")
app.include_router(messages_router, prefix="/api")
app.include_router(attachments_router, prefix="/api")
app.include_router(users_router, prefix="/api")
app.include_router(ws_router)  # /ws endpoint (no /api prefix)


# --- Health check ---


@app.get("/api/health")
async def health() -> dict[str, str]:
    """Health check with DB connectivity verification."""
    db_ok = "ok"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        db_ok = "error"
        logger.exception("Health check: database connectivity failed")

    return {
        "status": "ok" if db_ok == "ok" else "degraded",
        "database": db_ok,
        "ws_clients": str(ws_manager.active_count),
    }


# --- Attachment files ---
# Served read-only; uploads go through POST /api/attachments.

settings.storage_root.mkdir(parents=True, exist_ok=True)
app.mount("/files", StaticFiles(directory=str(settings.storage_root)), name="files")
