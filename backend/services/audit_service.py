from __future__ import annotations

from typing import Any, Dict

from fastapi import Depends

from services.auth_service import require_workspace_admin
from services.state import AppState, get_state


def _clamp_limit(limit: int, *, default: int = 200, max_limit: int = 2000) -> int:
    try:
        n = int(limit)
    except Exception:
        n = default
    return max(1, min(int(max_limit), n))


async def workspace_audit_logs(
    workspace_id: str,
    limit: int = 200,
    action: str | None = None,
    _: Dict[str, Any] = Depends(require_workspace_admin),
    state: AppState = Depends(get_state),
) -> Dict[str, Any]:
    lim = _clamp_limit(limit)
    logs = await state.db.list_audit_logs(
        limit=lim, workspace_id=workspace_id, action=action
    )
    return {"ok": True, "logs": logs, "count": len(logs), "limit": lim}
