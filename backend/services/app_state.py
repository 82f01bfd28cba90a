from __future__ import annotations

import asyncio
import logging
import time

from fastapi import FastAPI

from config import load_settings
from services.state import AppState


logger = logging.getLogger(__name__)

_STATE_LOCK = asyncio.Lock()
_DEFAULT_STATE: AppState | None = None


async def startup(app: FastAPI | None = None) -> None:
    global _DEFAULT_STATE
    async with _STATE_LOCK:
        if app is not None:
            if getattr(app.state, "wsr", None) is not None:
                return
        else:
            if _DEFAULT_STATE is not None:
                return

        settings = load_settings()
        started_at = time.time()

        # Async DB service (required).
        from services.db_service import DatabaseService
        from services.restore_service import RestoreService

        db = DatabaseService(
            database_url=settings.database_url,
            echo=settings.db_echo,
            migrate_on_startup=settings.db_migrate_on_startup,
        )
        try:
            await db.init()
        except Exception as e:
            await db.close()
            raise RuntimeError(f"Database init failed: {e}") from e

        st = AppState(
            settings=settings,
            started_at=started_at,
            db=db,
            restore=RestoreService(db, timeout_s=settings.restore_timeout_s),
        )
        logger.info(
            "Started restore timeout=%.0fs max_upload=%dMB",
            settings.restore_timeout_s,
            settings.backup_max_upload_mb,
        )

        if app is not None:
            app.state.wsr = st  # type: ignore[attr-defined]
        else:
            _DEFAULT_STATE = st


async def shutdown(app: FastAPI | None = None) -> None:
    global _DEFAULT_STATE

    st: AppState | None = None
    if app is not None:
        st = getattr(app.state, "wsr", None)
    else:
        st = _DEFAULT_STATE

    if st is not None:
        try:
            if st.db is not None:
                await st.db.close()
        except Exception:
            logger.exception("Database close failed")

    if app is not None:
        try:
            delattr(app.state, "wsr")
        except AttributeError:
            pass
    else:
        _DEFAULT_STATE = None
