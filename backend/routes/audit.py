from __future__ import annotations

from fastapi import APIRouter

from services import audit_service


router = APIRouter()

router.add_api_route(
    "/v1/workspaces/{workspace_id}/audit/logs",
    audit_service.workspace_audit_logs,
    methods=["GET"],
)
