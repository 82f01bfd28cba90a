from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.constants import APP_TITLE, APP_VERSION
from exceptions import (
    RestoreError,
    RestoreTimeoutError,
    ValidationError,
    WorkspaceNotFoundError,
)
from routes import audit, backup, root
from services import app_state
from utils.request_id import RequestIdMiddleware


logger = logging.getLogger(__name__)


def _as_bool(val: str | None, default: bool) -> bool:
    if val is None:
        return default
    s = str(val).strip().lower()
    if s in ("1", "true", "yes", "y", "on"):
        return True
    if s in ("0", "false", "no", "n", "off"):
        return False
    return default


def _as_csv(val: str | None) -> list[str]:
    if val is None:
        return []
    out: list[str] = []
    for part in str(val).split(","):
        p = part.strip()
        if not p:
            continue
        out.append(p)
    return out


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[no-untyped-def]
    try:
        await app_state.startup(app)
        yield
    finally:
        try:
            await app_state.shutdown(app)
        except Exception:
            logger.exception("Shutdown failed")


def _status_for(exc: RestoreError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, WorkspaceNotFoundError):
        return 404
    if isinstance(exc, RestoreTimeoutError):
        return 504
    return 500


def create_app() -> FastAPI:
    app = FastAPI(title=APP_TITLE, version=APP_VERSION, lifespan=lifespan)

    @app.exception_handler(RestoreError)
    async def _restore_error_handler(request, exc):  # type: ignore[no-untyped-def]
        _ = request
        status = _status_for(exc)
        if status >= 500:
            logger.error("Restore failed: %s", exc)
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    app.add_middleware(RequestIdMiddleware)

    cors_origins = _as_csv(os.environ.get("CORS_ALLOW_ORIGINS"))
    cors_allow_credentials = _as_bool(
        os.environ.get("CORS_ALLOW_CREDENTIALS"), default=True
    )
    if cors_origins:
        # Starlette forbids allow_credentials with wildcard origins.
        if any(o == "*" for o in cors_origins) and cors_allow_credentials:
            cors_allow_credentials = False
            cors_origins = ["*"]
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=cors_allow_credentials,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(root.router)
    app.include_router(backup.router)
    app.include_router(audit.router)

    return app
