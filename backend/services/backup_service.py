from __future__ import annotations

import asyncio
import logging
import tempfile
from typing import Any, Dict

from fastapi import Depends, File, HTTPException, Request, UploadFile

from exceptions import RestoreError
from models.responses import RestoreResponse, RestoreSummary
from services.auth_service import require_workspace_admin
from services.audit_logger import log_event
from services.backup_format import extract_backup_json
from services.state import AppState, get_state


logger = logging.getLogger(__name__)


def _mb_to_bytes(mb: float) -> int:
    return max(0, int(float(mb) * 1024 * 1024))


async def _read_upload(
    upload: UploadFile, *, max_bytes: int, spool_max_bytes: int
) -> bytes:
    tmp = tempfile.SpooledTemporaryFile(max_size=max(1, int(spool_max_bytes)))
    total = 0
    limit = int(max_bytes)
    try:
        while True:
            chunk = await upload.read(1024 * 1024)
            if not chunk:
                break
            total += len(chunk)
            if limit > 0 and total > limit:
                raise HTTPException(
                    status_code=413,
                    detail="Backup file exceeds size limit",
                )
            await asyncio.to_thread(tmp.write, chunk)
        await asyncio.to_thread(tmp.seek, 0)
        return await asyncio.to_thread(tmp.read)
    finally:
        tmp.close()


async def _load_backup_bytes(state: AppState, file: UploadFile) -> bytes:
    settings = state.settings
    max_bytes = _mb_to_bytes(settings.backup_max_upload_mb)
    raw = await _read_upload(
        file,
        max_bytes=max_bytes,
        spool_max_bytes=_mb_to_bytes(settings.backup_spool_max_mb),
    )
    if not raw:
        raise HTTPException(status_code=400, detail="No file uploaded")
    return await asyncio.to_thread(
        extract_backup_json, raw, file.filename, max_json_bytes=max_bytes
    )


def _audit_payload(summary: RestoreSummary, filename: str | None) -> Dict[str, Any]:
    return {
        "filename": filename,
        "counts": summary.model_dump(exclude={"user_mappings", "warnings"}),
        "warnings": len(summary.warnings),
        "unmatched_users": sum(1 for m in summary.user_mappings if not m.resolved_id),
    }


async def _run(
    request: Request,
    state: AppState,
    *,
    action: str,
    workspace_id: str,
    admin: Dict[str, Any],
    file: UploadFile,
) -> Dict[str, Any]:
    user_id = str(admin["user_id"])
    try:
        raw = await _load_backup_bytes(state, file)
        if action == "backup.restore":
            summary = await state.restore.execute_restore(workspace_id, user_id, raw)
        else:
            summary = await state.restore.preview_restore(workspace_id, user_id, raw)
    except HTTPException as e:
        await log_event(
            state,
            action=action,
            actor=user_id,
            ok=False,
            workspace_id=workspace_id,
            error=str(e.detail),
            request=request,
        )
        raise
    except RestoreError as e:
        await log_event(
            state,
            action=action,
            actor=user_id,
            ok=False,
            workspace_id=workspace_id,
            error=str(e),
            request=request,
        )
        raise
    except Exception as e:
        logger.exception("%s failed workspace=%s", action, workspace_id)
        await log_event(
            state,
            action=action,
            actor=user_id,
            ok=False,
            workspace_id=workspace_id,
            error=str(e),
            request=request,
        )
        raise HTTPException(status_code=500, detail="Restore failed") from e

    await log_event(
        state,
        action=action,
        actor=user_id,
        ok=True,
        workspace_id=workspace_id,
        resource=file.filename,
        payload=_audit_payload(summary, file.filename),
        request=request,
    )
    return RestoreResponse(data=summary).model_dump(by_alias=True)


async def backup_preview(
    workspace_id: str,
    request: Request,
    admin: Dict[str, Any] = Depends(require_workspace_admin),
    state: AppState = Depends(get_state),
    file: UploadFile = File(...),
) -> Dict[str, Any]:
    return await _run(
        request,
        state,
        action="backup.preview",
        workspace_id=workspace_id,
        admin=admin,
        file=file,
    )


async def backup_restore(
    workspace_id: str,
    request: Request,
    admin: Dict[str, Any] = Depends(require_workspace_admin),
    state: AppState = Depends(get_state),
    file: UploadFile = File(...),
) -> Dict[str, Any]:
    return await _run(
        request,
        state,
        action="backup.restore",
        workspace_id=workspace_id,
        admin=admin,
        file=file,
    )
