from __future__ import annotations

from typing import Any, Dict

from fastapi import Depends, Header, HTTPException, Request

from services.state import AppState, get_state


ADMIN_ROLE = "ADMIN"


async def require_user(
    request: Request,
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    state: AppState = Depends(get_state),
) -> str:
    """
    Acting user from the `X-User-Id` header set by the upstream session layer.
    """
    user_id = str(x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    if await state.db.get_user(user_id) is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    request.state.user_id = user_id
    return user_id


async def require_workspace_admin(
    workspace_id: str,
    user_id: str = Depends(require_user),
    state: AppState = Depends(get_state),
) -> Dict[str, Any]:
    role = await state.db.get_workspace_role(workspace_id=workspace_id, user_id=user_id)
    if str(role or "").upper() != ADMIN_ROLE:
        raise HTTPException(status_code=403, detail="Workspace admin access required")
    return {"user_id": user_id, "workspace_id": workspace_id, "role": ADMIN_ROLE}

