from __future__ import annotations

from typing import Any, Dict

from fastapi import Depends
from fastapi.responses import JSONResponse

from config.constants import APP_VERSION, SERVICE_NAME
from services.state import AppState, get_state


async def root() -> Dict[str, Any]:
    return {"ok": True, "service": SERVICE_NAME, "version": APP_VERSION}


async def health() -> Dict[str, Any]:
    return {"ok": True, "service": SERVICE_NAME, "version": APP_VERSION}


async def readyz(state: AppState = Depends(get_state)) -> JSONResponse:
    checks: Dict[str, Any] = {}
    try:
        h = await state.db.health()
        ok = bool(h.ok)
        checks["db"] = {"ok": ok, "detail": str(h.detail)}
    except Exception as e:
        ok = False
        checks["db"] = {"ok": False, "error": str(e)}
    checks["uptime_s"] = round(state.uptime_s(), 3)
    return JSONResponse(
        status_code=200 if ok else 503,
        content={"ok": ok, "checks": checks},
    )
