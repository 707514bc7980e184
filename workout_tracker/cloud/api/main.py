#!/usr/bin/env python3
"""
Workout tracker image API: issues short-lived signed URLs for progress photos.
Run with `uvicorn workout_tracker.cloud.api.main:app`.
"""
import logging
import re
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from workout_tracker.cloud.api import config, create_health_router, create_router
from workout_tracker.cloud.api.logging_config import setup_logging

setup_logging()

log = logging.getLogger(__name__)

# Query values that must never reach the logs.
_SECRET_QUERY = re.compile(r"((?:token|signature|x-amz-signature)=)[^&\s]+", re.IGNORECASE)

# Readiness probe polled by the load balancer; logged only when unhealthy.
_QUIET_PATHS = {"/api/status"}


def _loggable_path(path: str, query: str) -> str:
    if not query:
        return path
    safe = _SECRET_QUERY.sub(r"\1REDACTED", query)
    return f"{path}?{safe}"


class _AccessLogMiddleware(BaseHTTPMiddleware):
    """One log record per request with status and duration. Headers are never logged."""

    async def dispatch(self, request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        if request.url.path in _QUIET_PATHS and response.status_code == 200:
            return response
        host, port = request.client or ("?", "?")
        log.info(
            "request",
            extra={
                "client": f"{host}:{port}",
                "method": request.method,
                "path": _loggable_path(request.url.path, request.url.query),
                "status_code": response.status_code,
                "duration": time.perf_counter() - started,
            },
        )
        return response


@asynccontextmanager
async def _lifespan(app: FastAPI):
    log.info(
        "Image API starting API_ENV=%s bucket=%s region=%s app_id=%s url_lifetime=%ss",
        config.API_ENV,
        config.IMAGE_BUCKET or "?",
        config.IMAGE_BUCKET_REGION,
        config.FIREBASE_APP_ID,
        config.SIGNED_URL_EXPIRES,
    )
    missing = config.missing_settings()
    if missing:
        log.warning("Missing settings: %s; /api/status will report 503", ", ".join(missing))
    yield


app = FastAPI(title="Workout Tracker Images", lifespan=_lifespan)
app.add_middleware(_AccessLogMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(create_health_router(), prefix="/api")  # ping/status, no auth
app.include_router(create_router(), prefix="/api")  # signed image urls, bearer token
