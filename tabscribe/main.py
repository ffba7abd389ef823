import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tabscribe.config import DEFAULT_RETRY_AFTER, EXT_ALLOWED_ORIGIN
from tabscribe.database import close_db, init_db
from tabscribe.errors import (
    AuthError,
    PersistenceError,
    ProviderFailure,
    ProviderRateLimitError,
    ValidationError,
)
from tabscribe.routers import health, transcribe, transcripts

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Tabscribe...")
    await init_db()
    logger.info("Database initialized")
    yield
    await close_db()
    logger.info("Tabscribe shut down")


app = FastAPI(
    title="Tabscribe",
    description="Chunked tab-audio transcription with overlap stitching",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[EXT_ALLOWED_ORIGIN],
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
    max_age=86400,
)


@app.exception_handler(ValidationError)
async def handle_validation_error(request: Request, exc: ValidationError):
    return JSONResponse({"error": str(exc)}, status_code=400)


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    logger.info("Rejected malformed request to %s: %s", request.url.path, exc.errors())
    return JSONResponse({"error": "Malformed request"}, status_code=400)


@app.exception_handler(AuthError)
async def handle_auth_error(request: Request, exc: AuthError):
    return JSONResponse({"error": str(exc) or "Unauthorized"}, status_code=401)


@app.exception_handler(ProviderRateLimitError)
async def handle_rate_limit(request: Request, exc: ProviderRateLimitError):
    retry_after = exc.retry_after_label(DEFAULT_RETRY_AFTER)
    return JSONResponse(
        {
            "error": f"{exc.provider.capitalize()} rate limit exceeded",
            "retryAfter": retry_after,
            "rateLimited": True,
            "provider": exc.provider,
        },
        status_code=429,
        headers={"Retry-After": retry_after.rstrip("s").split(".")[0]},
    )


@app.exception_handler(ProviderFailure)
async def handle_provider_failure(request: Request, exc: ProviderFailure):
    return JSONResponse({"error": "Transcription failed"}, status_code=500)


@app.exception_handler(PersistenceError)
async def handle_persistence_error(request: Request, exc: PersistenceError):
    body: dict = {"error": "Failed to save transcript"}
    if exc.text:
        body["text"] = exc.text
    return JSONResponse(body, status_code=500)


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


app.include_router(transcribe.router)
app.include_router(transcripts.router)
app.include_router(health.router)
