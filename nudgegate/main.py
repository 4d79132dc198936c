from fastapi import FastAPI, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy import text

from nudgegate.db.base import get_db
from nudgegate.core.config import settings
from nudgegate.core.logging import configure_logging
from nudgegate.routers import metrics as metrics_router
from nudgegate.routers import recovery as recovery_router
from nudgegate.routers import protocols as protocols_router
from nudgegate.routers import state as state_router
from nudgegate.routers import mvd as mvd_router
from nudgegate.routers import memory as memory_router
from nudgegate.routers import nudges as nudges_router
from nudgegate.core.errors import (
    NudgeGateException,
    nudgegate_exception_handler,
    validation_exception_handler,
    unhandled_exception_handler,
)

configure_logging(settings.LOG_LEVEL)

app = FastAPI(
    title="NudgeGate API",
    description=(
        "**Personalization and nudge governance engine**\n\n"
        "Scores daily recovery against a personal baseline, keeps a decaying memory "
        "of user preferences, manages Minimum Viable Day mode and decides whether "
        "each candidate nudge is delivered or suppressed.\n\n"
        "Every user-scoped route reads the caller from the `X-User-Id` header.\n\n"
        "All error responses follow the `{code, message, details}` envelope."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Optional text-completion callable (prompt -> text) for decision narratives.
# Registered by the deployment; unused unless NARRATIVE_ENABLED is set.
app.state.text_completion = None

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Exception handlers (most specific first) ---
app.add_exception_handler(NudgeGateException, nudgegate_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# --- Routers ---
app.include_router(metrics_router.router)
app.include_router(recovery_router.router)
app.include_router(protocols_router.router)
app.include_router(state_router.router)
app.include_router(mvd_router.router)
app.include_router(memory_router.router)
app.include_router(nudges_router.router)


@app.get("/health", tags=["health"], summary="Health check")
def health(db: Session = Depends(get_db)):
    """
    Returns `{"status": "ok", "db": "ok"}` when both the API and the database
    are reachable. Returns HTTP 503 if the DB is down.
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError:
        db_status = "unreachable"

    if db_status != "ok":
        return JSONResponse(
            status_code=503,
            content={"status": "error", "db": db_status},
        )
    return {"status": "ok", "db": "ok", "env": settings.APP_ENV}
