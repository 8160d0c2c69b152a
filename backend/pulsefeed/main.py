"""Main FastAPI application."""
import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

from pulsefeed.api.notifications import router as notifications_router
from pulsefeed.domain.common.errors import DomainError, NotFoundError, ReadStateStorageError
from pulsefeed.infra.db import models  # noqa: F401  (registers tables on Base.metadata)
from pulsefeed.infra.db.session import dispose_engine, get_session_factory
from pulsefeed.infra.storage.read_state_slots import build_read_state_slot
from pulsefeed.settings import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, str(settings.log_level).upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    app.state.read_state_slot = build_read_state_slot(settings)
    logger.info("%s %s started (read state: %s)", settings.app_name, settings.app_version, settings.read_state_backend)
    try:
        yield
    finally:
        try:
            close = getattr(app.state.read_state_slot, "close", None)
            if close is not None:
                await close()
            await dispose_engine()
        except asyncio.CancelledError:
            logger.info("Lifespan shutdown cancelled (e.g. Ctrl+C); cleanup attempted.")
            raise


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r".*",
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS", "HEAD"],
    allow_headers=["*"],
    max_age=3600,
)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log all requests and responses."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        logger.debug("[SERVER REQUEST] %s %s", request.method, request.url.path)
        response = await call_next(request)
        process_time = time.time() - start_time
        logger.info(
            "[SERVER RESPONSE] %s %s - %s (%.3fs)",
            request.method, request.url.path, response.status_code, process_time,
        )
        return response


# Add logging middleware AFTER CORS (CORS must be first)
app.add_middleware(LoggingMiddleware)


@app.exception_handler(NotFoundError)
async def domain_not_found_handler(request: Request, exc: NotFoundError):
    """Return 404 when a resource is not found."""
    return JSONResponse(
        status_code=404,
        content={"detail": str(exc)},
    )


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    """Any other domain error that reaches the HTTP layer."""
    logger.error("[DOMAIN ERROR] %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc)},
    )


# Health check (root and under /v1 so GET /v1/health works behind a /v1 proxy prefix)
@app.get("/health")
@app.get(f"{settings.api_v1_prefix}/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": settings.app_version}


@app.get("/ready")
async def readiness(request: Request):
    """Readiness endpoint: database and read-state slot reachable -> 200, otherwise 503."""
    checks = {}
    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = str(e)
    try:
        await request.app.state.read_state_slot.get(f"{settings.read_state_key_prefix}:__ready__")
        checks["read_state"] = "ok"
    except ReadStateStorageError as e:
        checks["read_state"] = str(e)

    ready = all(v == "ok" for v in checks.values())
    if ready:
        return {"ready": True, "checks": checks}
    return JSONResponse(status_code=503, content={"ready": False, "checks": checks})


app.include_router(notifications_router, prefix=settings.api_v1_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("pulsefeed.main:app", host="0.0.0.0", port=8000, reload=True)
