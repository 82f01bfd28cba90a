from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import Request

from services.state import AppState


logger = logging.getLogger(__name__)


def _actor_from_request(request: Request | None) -> str | None:
    if request is None:
        return None
    actor = getattr(request.state, "user_id", None)
    if actor:
        return str(actor)
    return None


def _request_meta(request: Request | None) -> Dict[str, str | None]:
    if request is None:
        return {
            "ip": None,
            "user_agent": None,
            "request_id": None,
        }
    ip = None
    try:
        ip = request.client.host if request.client else None
    except Exception:
        ip = None
    return {
        "ip": ip,
        "user_agent": request.headers.get("user-agent"),
        "request_id": getattr(request.state, "request_id", None),
    }


async def log_event(
    state: AppState,
    *,
    action: str,
    actor: str | None = None,
    ok: bool = True,
    workspace_id: str | None = None,
    resource: str | None = None,
    error: str | None = None,
    payload: Dict[str, Any] | None = None,
    request: Request | None = None,
) -> None:
    """
    Persist an audit row. Audit failures are logged and never raised, so they
    cannot mask the outcome of the audited action.
    """
    actor_val = str(actor or _actor_from_request(request) or "unknown")
    meta = _request_meta(request)
    db = getattr(state, "db", None)
    if db is None:
        return
    try:
        await db.add_audit_log(
            action=str(action or ""),
            actor=actor_val,
            ok=bool(ok),
            workspace_id=workspace_id,
            resource=str(resource or "") or None,
            error=str(error) if error else None,
            ip=meta.get("ip"),
            user_agent=meta.get("user_agent"),
            request_id=meta.get("request_id"),
            payload=dict(payload or {}),
        )
    except Exception:
        logger.exception("Audit log write failed action=%s actor=%s", action, actor_val)
