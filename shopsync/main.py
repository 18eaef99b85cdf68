"""
ShopSync: local inventory as source of truth, pushed to Shopify stores.

App wiring only: logging, tables, middleware, error handlers and routers.
All logic lives in services/.
"""

import os
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from .database import engine
from .exceptions import ShopSyncError
from .http_client import close_clients
from .logging_config import setup_logging
from .models import Base
from .rate_limit import limiter
from .routers import audit, data_management, inventory, stock, stores, sync
from .schemas.errors import ErrorResponse
from .services.sync_jobs import sync_jobs


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if not os.environ.get("TESTING"):
        Base.metadata.create_all(bind=engine)
        logger.info("Tables ready ({})", engine.dialect.name)
    yield
    await sync_jobs.shutdown()
    await close_clients()


app = FastAPI(title="ShopSync", version="1.0.0", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ── Middleware ────────────────────────────────────────────────────────


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = uuid.uuid4().hex[:8]
    request.state.request_id = request_id
    started = time.perf_counter()
    with logger.contextualize(request_id=request_id):
        response = await call_next(request)
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        if request.url.path != "/health":
            logger.info(
                "{} {} -> {} ({}ms)",
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
            )
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time"] = f"{elapsed_ms}ms"
    return response


# ── Error handlers ────────────────────────────────────────────────────


def _error(request: Request, status_code: int, message: str, detail: list | None = None):
    body = ErrorResponse(
        error=message,
        status_code=status_code,
        request_id=getattr(request.state, "request_id", ""),
        detail=detail,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(ShopSyncError)
async def shopsync_error_handler(request: Request, exc: ShopSyncError):
    if exc.status_code >= 500:
        logger.opt(exception=exc).error("Unhandled ShopSync error on {}", request.url.path)
    return _error(request, exc.status_code, str(exc))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(request, exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    detail = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg", ""), "type": e.get("type", "")}
        for e in exc.errors()
    ]
    return _error(request, 422, "Validation error", detail)


# ── Routers ───────────────────────────────────────────────────────────

for module in (sync, inventory, stores, stock, audit, data_management):
    app.include_router(module.router)


@app.get("/health")
async def health():
    return {"status": "ok", "version": app.version, "database": engine.dialect.name}
