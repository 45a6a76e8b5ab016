"""FastAPI application entry point."""

import logging
import os

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from postcraft.api import auth, content, fulfillment, quota, uploads, videos
from postcraft.config import settings
from postcraft.errors import PostcraftError

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.log_level.upper())
    ),
)
log = structlog.get_logger()

app = FastAPI(
    title="Postcraft",
    description="YouTube transcript → LinkedIn post / carousel",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Errors ───────────────────────────────────────────────────────────────────


@app.exception_handler(PostcraftError)
def handle_postcraft_error(request: Request, exc: PostcraftError):
    log.info(
        "request_failed",
        path=request.url.path,
        code=exc.code,
        status=exc.status_code,
        retryable=exc.retryable,
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(ValueError)
def handle_value_error(request: Request, exc: ValueError):
    log.info("request_rejected", path=request.url.path, reason=str(exc))
    return JSONResponse(
        status_code=400,
        content={"error": {"code": "invalid_request", "message": str(exc), "retryable": False}},
    )


# ── API routes ───────────────────────────────────────────────────────────────
app.include_router(auth.router)
app.include_router(videos.router)
app.include_router(content.router)
app.include_router(quota.router)
app.include_router(fulfillment.router)
app.include_router(uploads.router)

# ── Stored media ─────────────────────────────────────────────────────────────
os.makedirs(settings.media_root, exist_ok=True)
app.mount(settings.media_base_url, StaticFiles(directory=settings.media_root), name="media")


@app.get("/health")
def health():
    return {"status": "ok"}
