from __future__ import annotations

from fastapi import APIRouter

from services import backup_service


router = APIRouter()

router.add_api_route(
    "/v1/workspaces/{workspace_id}/backup/preview",
    backup_service.backup_preview,
    methods=["POST"],
)
router.add_api_route(
    "/v1/workspaces/{workspace_id}/backup/restore",
    backup_service.backup_restore,
    methods=["POST"],
)
