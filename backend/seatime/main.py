import hmac
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from sqlalchemy.exc import IntegrityError
from starlette.middleware.base import BaseHTTPMiddleware
from seatime.api.routes import router
from seatime.config import settings
from seatime.database import init_db
from seatime.errors import DataConflictError, EntryNotFoundError, InvalidStateError, UnknownVesselError

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables at startup and warn when polling cannot authenticate."""
    init_db()
    if not settings.MYSHIPTRACKING_API_KEY:
        logger.warning("MYSHIPTRACKING_API_KEY is not set — AIS checks will fail with authentication errors")
    yield


app = FastAPI(
    title="Sea Time Tracker",
    description=(
        "Automatic sea-time detection from AIS positions, with review, "
        "confirmation and MCA accrual of sea service."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

# CORS origins from settings (comma-separated env var)
cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# API key authentication middleware
class APIKeyMiddleware(BaseHTTPMiddleware):
    """Simple API key check. If SEATIME_API_KEY is unset, all requests pass."""

    async def dispatch(self, request: Request, call_next):
        if settings.SEATIME_API_KEY is not None:
            # Allow health check and OpenAPI docs without auth
            if request.url.path not in ("/health", "/docs", "/openapi.json", "/redoc"):
                api_key = request.headers.get("X-API-Key")
                if not hmac.compare_digest(api_key or "", settings.SEATIME_API_KEY):
                    return JSONResponse(
                        status_code=401,
                        content={"detail": "Invalid or missing API key"},
                    )
        return await call_next(request)


app.add_middleware(APIKeyMiddleware)

limiter = Limiter(key_func=get_remote_address, default_limits=["60/minute"])
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(router, prefix="/api/v1")


# ── Structured error handlers ─────────────────────────────────────────────────

@app.exception_handler(DataConflictError)
async def conflict_error_handler(request: Request, exc: DataConflictError):
    return JSONResponse(
        status_code=409,
        content={"error": "Conflict", "detail": str(exc), "existing_entry_id": exc.existing_entry_id},
    )


@app.exception_handler(InvalidStateError)
async def invalid_state_handler(request: Request, exc: InvalidStateError):
    return JSONResponse(status_code=409, content={"error": "Invalid state", "detail": str(exc)})


@app.exception_handler(EntryNotFoundError)
async def entry_not_found_handler(request: Request, exc: EntryNotFoundError):
    return JSONResponse(status_code=404, content={"error": "Not found", "detail": str(exc)})


@app.exception_handler(UnknownVesselError)
async def vessel_not_found_handler(request: Request, exc: UnknownVesselError):
    return JSONResponse(status_code=404, content={"error": "Not found", "detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=422, content={"error": "Validation error", "detail": str(exc)})


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    return JSONResponse(status_code=409, content={"error": "Conflict", "detail": str(exc.orig) if exc.orig else str(exc)})


@app.exception_handler(Exception)
async def general_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s %s:\n%s", request.method, request.url.path, traceback.format_exc())
    return JSONResponse(status_code=500, content={"error": "Internal server error", "detail": "An unexpected error occurred."})


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "version": "0.1.0"}
