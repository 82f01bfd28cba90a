from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from exceptions import RestoreError
from services.backup_format import BackupFile
from services.db_service import DatabaseService, WorkspaceMember


class IdMapper:
    """
    Original id -> newly created id, scoped to a single restore call.
    """

    def __init__(self) -> None:
        self._ids: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, original_id: object) -> bool:
        return original_id in self._ids

    def set(self, original_id: str, new_id: str) -> None:
        self._ids[str(original_id)] = str(new_id)

    def get(self, original_id: str | None) -> str | None:
        if not original_id:
            return None
        return self._ids.get(str(original_id))

    def require(self, original_id: str, label: str) -> str:
        new_id = self.get(original_id)
        if not new_id:
            raise RestoreError(f"Missing ID mapping for {label}: {original_id}")
        return new_id


@dataclass(frozen=True)
class MappedUser:
    original_id: str
    original_email: str
    original_name: str
    resolved_id: Optional[str]
    resolved_name: Optional[str]


class UserMapper:
    """
    Backup user refs -> destination workspace members, matched by email.

    `resolve_optional` is for nullable actor columns; `resolve` never returns
    None and falls back to the acting admin.
    """

    def __init__(self, fallback_user_id: str) -> None:
        self.fallback_user_id = str(fallback_user_id)
        self._resolved: Dict[str, Optional[str]] = {}
        self._mappings: List[MappedUser] = []

    def add_mapping(
        self,
        *,
        original_id: str,
        original_email: str,
        original_name: str,
        resolved_id: str | None,
        resolved_name: str | None,
    ) -> None:
        self._resolved[str(original_id)] = resolved_id
        self._mappings.append(
            MappedUser(
                original_id=str(original_id),
                original_email=str(original_email),
                original_name=str(original_name),
                resolved_id=resolved_id,
                resolved_name=resolved_name,
            )
        )

    def resolve_optional(self, ref: str | None) -> str | None:
        if not ref:
            return None
        return self._resolved.get(str(ref))

    def resolve(self, ref: str | None) -> str:
        return self.resolve_optional(ref) or self.fallback_user_id

    def get_mappings(self) -> list[MappedUser]:
        return list(self._mappings)

    def get_warnings(self) -> list[str]:
        return [
            f'User "{m.original_name}" ({m.original_email}) not found in workspace; '
            "references will use fallback or be skipped"
            for m in self._mappings
            if not m.resolved_id
        ]


def map_users(
    *,
    acting_admin_id: str,
    backup: BackupFile,
    members: Iterable[WorkspaceMember],
) -> UserMapper:
    by_email: Dict[str, WorkspaceMember] = {}
    for m in members:
        key = str(m.email or "").strip().lower()
        if key and key not in by_email:
            by_email[key] = m

    mapper = UserMapper(acting_admin_id)
    for ref in backup.metadata.user_refs:
        match = by_email.get(str(ref.email or "").strip().lower())
        mapper.add_mapping(
            original_id=ref.original_id,
            original_email=ref.email,
            original_name=ref.display_name,
            resolved_id=match.user_id if match else None,
            resolved_name=match.display_name if match else None,
        )
    return mapper


async def build_user_mapper(
    db: DatabaseService,
    *,
    workspace_id: str,
    acting_admin_id: str,
    backup: BackupFile,
) -> UserMapper:
    members = await db.list_workspace_members(workspace_id)
    return map_users(acting_admin_id=acting_admin_id, backup=backup, members=members)
