"""
Budget API — FastAPI Backend
Main entry point. Registers the routers and error handlers and
initializes the database (unless running in no-database mode).
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

# Load .env from ~/BudgetApp/.env first, then fall back to CWD/.env.
# Second call is a no-op for vars already set by the first.
load_dotenv(dotenv_path=Path.home() / "BudgetApp" / ".env")
load_dotenv()

from . import __version__
from .config import Settings, get_settings
from .database import SessionLocal, init_db
from .errors import AppError
from .routers import imports
from .services.batch_store import InMemoryBatchStore
from .services.seed_data import seed_categories


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run on startup: create tables and seed fallback categories."""
    settings = get_settings()
    if settings.disable_db:
        logger.warning("DISABLE_DB=1: imports are parsed and reported but nothing is persisted")
    else:
        init_db()
        db = SessionLocal()
        try:
            seed_categories(db)
        finally:
            db.close()
    yield


app = FastAPI(
    title="Budget API",
    description="Household budget backend with bank statement import",
    version=__version__,
    lifespan=lifespan,
)
app.state.batch_memory = InMemoryBatchStore()

# CORS — allow the admin frontend (Vite dev server) to call the API
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Error handlers: every error is {"error": ..., "details"?: ...} ──

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
    payload = {"error": detail}
    if not isinstance(exc.detail, str):
        payload["details"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_errors(exc)},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


# Register routers
app.include_router(imports.router, prefix="/imports", tags=["Imports"])


@app.get("/health")
def health_check(settings: Settings = Depends(get_settings)):
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": __version__,
        "database": "disabled" if settings.disable_db else "enabled",
    }
