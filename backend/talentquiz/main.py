"""FastAPI application entry point."""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
import time
import uuid

from talentquiz.core.config import settings

# ── Logging configuration (done once, before any app imports) ─

_LOG_DIR = os.path.abspath(settings.LOG_DIR)
os.makedirs(_LOG_DIR, exist_ok=True)

_fmt = logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
_stream_handler = logging.StreamHandler(sys.stdout)
_stream_handler.setFormatter(_fmt)
_file_handler = logging.handlers.RotatingFileHandler(
    os.path.join(_LOG_DIR, "app.log"), maxBytes=10 * 1024 * 1024, backupCount=3
)
_file_handler.setFormatter(_fmt)

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    handlers=[_stream_handler, _file_handler],
)
# Quieten noisy third-party loggers
for _noisy in ("httpx", "httpcore", "groq", "uvicorn.access"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from talentquiz.core.errors import QuizSystemError, get_user_friendly_message
from talentquiz.routes.evaluation import router as evaluation_router
from talentquiz.routes.health import router as health_router
from talentquiz.routes.quiz import router as quiz_router
from talentquiz.services.performance_logger import performance_monitoring_middleware

logger = logging.getLogger("main")


# ── App ───────────────────────────────────────────────────


app = FastAPI(title="TalentQuiz AI API", version="1.0.0")


# ── Middleware ────────────────────────────────────────────

# Performance monitoring (first to capture full request time)
app.middleware("http")(performance_monitoring_middleware)


@app.middleware("http")
async def log_requests(request, call_next):
    request_id = uuid.uuid4().hex[:8]
    request.state.request_id = request_id
    start = time.time()
    try:
        response = await call_next(request)
        dt = time.time() - start
        logger.info("%s %s %s %.2fs [%s]", request.method, request.url.path, response.status_code, dt, request_id)
        response.headers["X-Request-ID"] = request_id
        return response
    except Exception as e:
        dt = time.time() - start
        logger.error("%s %s ERROR %s %.2fs [%s]", request.method, request.url.path, type(e).__name__, dt, request_id)
        raise


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Error handlers ────────────────────────────────────────


@app.exception_handler(QuizSystemError)
async def quiz_system_error_handler(request, exc: QuizSystemError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code.value, "message": get_user_friendly_message(exc)},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    request_id = getattr(request.state, "request_id", "unknown")
    logger.exception("Unhandled %s [request_id=%s]", type(exc).__name__, request_id)
    return JSONResponse(
        status_code=500,
        content={"error": "INTERNAL_ERROR", "message": get_user_friendly_message(exc)},
    )


# ── Routes ────────────────────────────────────────────────

app.include_router(health_router, tags=["health"])
app.include_router(quiz_router, tags=["quiz"])
app.include_router(evaluation_router, tags=["evaluation"])
