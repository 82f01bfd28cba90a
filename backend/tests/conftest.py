from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict

import pytest


# Allow `import config`, `import services.restore_service`, etc when running `pytest` from repo root.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from services.db_service import DatabaseService  # noqa: E402
from services.restore_service import RestoreService  # noqa: E402


ADMIN_EMAIL = "admin@example.com"
ALICE_EMAIL = "alice@example.com"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def db(tmp_path) -> DatabaseService:
    svc = DatabaseService(database_url=f"sqlite:///{tmp_path / 'restore.db'}")
    await svc.init()
    try:
        yield svc
    finally:
        await svc.close()


@pytest.fixture
async def workspace(db: DatabaseService) -> Dict[str, str]:
    """Destination workspace with an admin and one regular member (Alice)."""
    admin_id = await db.create_user(email=ADMIN_EMAIL, display_name="Admin")
    alice_id = await db.create_user(email=ALICE_EMAIL, display_name="Alice")
    workspace_id = await db.create_workspace(name="Dest", slug="dest")
    await db.add_workspace_member(workspace_id=workspace_id, user_id=admin_id, role="ADMIN")
    await db.add_workspace_member(workspace_id=workspace_id, user_id=alice_id, role="MEMBER")
    return {"id": workspace_id, "admin_id": admin_id, "alice_id": alice_id}


@pytest.fixture
def restore(db: DatabaseService) -> RestoreService:
    return RestoreService(db, timeout_s=30.0)


def user_ref(original_id: str, email: str, name: str) -> Dict[str, str]:
    return {"originalId": original_id, "email": email, "displayName": name}


def task(original_id: str, status_ref: str, **extra: Any) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "_originalId": original_id,
        "title": f"Task {original_id}",
        "priority": "MEDIUM",
        "position": 0,
        "statusRef": status_ref,
    }
    out.update(extra)
    return out


def make_backup(
    *,
    projects: list[Dict[str, Any]] | None = None,
    channels: list[Dict[str, Any]] | None = None,
    user_refs: list[Dict[str, str]] | None = None,
    **extra: Any,
) -> Dict[str, Any]:
    doc: Dict[str, Any] = {
        "metadata": {
            "version": "1.1",
            "exportedAt": "2024-05-01T12:00:00Z",
            "sourceWorkspace": {"name": "Source", "slug": "source"},
            "userRefs": list(user_refs or []),
        },
        "projects": list(projects or []),
        "channels": list(channels or []),
    }
    doc.update(extra)
    return doc


def encode(doc: Dict[str, Any]) -> bytes:
    return json.dumps(doc).encode("utf-8")


def scenario_backup() -> Dict[str, Any]:
    """One project: statuses s1/s2, task t1 on s1, task t2 on s2 blocked by t1."""
    return make_backup(
        projects=[
            {
                "project": {"name": "Launch", "color": "#336699"},
                "statuses": [
                    {"_originalId": "s1", "name": "Todo", "position": 0, "isCompletion": False},
                    {"_originalId": "s2", "name": "Done", "position": 1, "isCompletion": True},
                ],
                "tasks": [
                    task("t1", "s1"),
                    task("t2", "s2", dependencies=[{"blockingTaskRef": "t1"}]),
                ],
            }
        ]
    )
