from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

from exceptions import RestoreTimeoutError, WorkspaceNotFoundError
from models.responses import RestoreSummary
from services.backup_format import (
    BackupChannel,
    BackupFile,
    BackupMessage,
    BackupProject,
    BackupTask,
    parse_backup_file,
)
from services.db_service import DatabaseService
from services.restore_mapping import IdMapper, UserMapper, build_user_mapper
from services.restore_summary import (
    RestoreCounts,
    build_summary,
    count_backup,
    unsupported_content_warnings,
)
from sql_store import (
    ActivityLogRecord,
    ChatChannelMemberRecord,
    ChatChannelRecord,
    ChatMessageRecord,
    ChatReactionRecord,
    CommentRecord,
    CustomFieldRecord,
    CustomFieldValueRecord,
    LabelRecord,
    ProjectMemberRecord,
    ProjectRecord,
    StatusColumnRecord,
    SubtaskRecord,
    TaskAssigneeRecord,
    TaskDependencyRecord,
    TaskLabelRecord,
    TaskRecord,
    WorkspaceMemberRecord,
    WorkspaceRecord,
)


logger = logging.getLogger(__name__)


class WriteOutcome(str, enum.Enum):
    CREATED = "created"
    SKIPPED_DUPLICATE = "skipped_duplicate"


@dataclass(frozen=True)
class PendingDependency:
    """Dependency edge collected in the task pass, wired once the project's tasks exist."""

    blocked_task_id: str
    task_title: str
    blocking_task_ref: str
    type: str = "blocks"


@dataclass
class _WorkspaceLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


@dataclass
class RestoreRun:
    workspace_id: str
    acting_admin_id: str
    users: UserMapper
    ids: IdMapper = field(default_factory=IdMapper)
    counts: RestoreCounts = field(default_factory=RestoreCounts)
    warnings: List[str] = field(default_factory=list)


def _ts(v: Optional[datetime]) -> Optional[float]:
    if v is None:
        return None
    return float(v.timestamp())


async def _insert(session: AsyncSession, rec: SQLModel) -> None:
    session.add(rec)
    await session.flush()


async def _try_insert(
    session: AsyncSession, rec: SQLModel, *, key: Any = None
) -> WriteOutcome:
    # Only constraint violations are ignorable; anything else aborts the restore.
    if key is not None and await session.get(type(rec), key) is not None:
        return WriteOutcome.SKIPPED_DUPLICATE
    try:
        async with session.begin_nested():
            session.add(rec)
    except IntegrityError:
        return WriteOutcome.SKIPPED_DUPLICATE
    return WriteOutcome.CREATED


class RestoreService:
    """
    Restores a backup document into an existing workspace.

    Every restored entity gets a new id. `execute_restore` writes inside one
    transaction and either commits everything or nothing.
    """

    def __init__(self, db: DatabaseService, *, timeout_s: float = 120.0) -> None:
        self._db = db
        self._timeout_s = max(1.0, float(timeout_s))
        self._locks: Dict[str, _WorkspaceLock] = {}

    @property
    def timeout_s(self) -> float:
        return self._timeout_s

    @asynccontextmanager
    async def _workspace_lock(self, workspace_id: str) -> AsyncIterator[None]:
        entry = self._locks.setdefault(workspace_id, _WorkspaceLock())
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[workspace_id]

    async def preview_restore(
        self, workspace_id: str, acting_admin_id: str, raw: bytes
    ) -> RestoreSummary:
        backup = parse_backup_file(raw)
        users = await build_user_mapper(
            self._db,
            workspace_id=str(workspace_id),
            acting_admin_id=str(acting_admin_id),
            backup=backup,
        )
        warnings = users.get_warnings() + unsupported_content_warnings(backup)
        return build_summary(count_backup(backup), users, warnings)

    async def execute_restore(
        self, workspace_id: str, acting_admin_id: str, raw: bytes
    ) -> RestoreSummary:
        wid = str(workspace_id)
        backup = parse_backup_file(raw)
        users = await build_user_mapper(
            self._db,
            workspace_id=wid,
            acting_admin_id=str(acting_admin_id),
            backup=backup,
        )
        run = RestoreRun(
            workspace_id=wid,
            acting_admin_id=str(acting_admin_id),
            users=users,
            warnings=users.get_warnings() + unsupported_content_warnings(backup),
        )

        async with self._workspace_lock(wid):
            logger.info(
                "Restore started workspace=%s projects=%d channels=%d",
                wid,
                len(backup.projects),
                len(backup.channels),
            )
            try:
                await asyncio.wait_for(
                    self._write_all(run, backup), timeout=self._timeout_s
                )
            except asyncio.TimeoutError as e:
                logger.warning(
                    "Restore timed out workspace=%s after %.0fs; rolled back",
                    wid,
                    self._timeout_s,
                )
                raise RestoreTimeoutError(self._timeout_s) from e

        logger.info(
            "Restore finished workspace=%s counts=%s warnings=%d",
            wid,
            run.counts.as_dict(),
            len(run.warnings),
        )
        return build_summary(run.counts, run.users, run.warnings)

    async def _write_all(self, run: RestoreRun, backup: BackupFile) -> None:
        async with AsyncSession(self._db.engine) as session:
            async with session.begin():
                await self._lock_workspace(session, run.workspace_id)
                for entry in backup.projects:
                    await self._restore_project(session, run, entry)
                for entry in backup.channels:
                    await self._restore_channel(session, run, entry)

    async def _lock_workspace(self, session: AsyncSession, workspace_id: str) -> None:
        stmt = (
            select(WorkspaceRecord)
            .where(WorkspaceRecord.id == workspace_id)
            .with_for_update()
        )
        if (await session.exec(stmt)).first() is None:
            raise WorkspaceNotFoundError(f"Workspace {workspace_id} not found")

    async def _is_workspace_member(
        self, session: AsyncSession, run: RestoreRun, user_id: str
    ) -> bool:
        rec = await session.get(WorkspaceMemberRecord, (run.workspace_id, user_id))
        return rec is not None

    # ---- Projects ----

    async def _restore_project(
        self, session: AsyncSession, run: RestoreRun, entry: BackupProject
    ) -> None:
        attrs = entry.project
        project = ProjectRecord(
            workspace_id=run.workspace_id,
            name=attrs.name,
            description=attrs.description,
            color=attrs.color,
            icon=attrs.icon,
        )
        await _insert(session, project)
        run.counts.projects += 1

        # Status, label and field refs only resolve within their own project.
        scope = IdMapper()

        for s in entry.statuses:
            status = StatusColumnRecord(
                project_id=project.id,
                name=s.name,
                color=s.color,
                position=s.position,
                is_completion=s.is_completion,
            )
            await _insert(session, status)
            scope.set(s.original_id, status.id)
            run.counts.statuses += 1

        for lbl in entry.labels:
            label = LabelRecord(project_id=project.id, name=lbl.name, color=lbl.color)
            await _insert(session, label)
            scope.set(lbl.original_id, label.id)
            run.counts.labels += 1

        for f in entry.custom_fields:
            cf = CustomFieldRecord(
                project_id=project.id,
                name=f.name,
                type=f.type,
                options=f.options,
                required=f.required,
                position=f.position,
            )
            await _insert(session, cf)
            scope.set(f.original_id, cf.id)
            run.counts.custom_fields += 1

        for m in entry.members:
            user_id = run.users.resolve_optional(m.user_ref)
            if not user_id or not await self._is_workspace_member(session, run, user_id):
                continue
            await _try_insert(
                session,
                ProjectMemberRecord(project_id=project.id, user_id=user_id),
                key=(project.id, user_id),
            )

        pending: list[PendingDependency] = []
        for t in entry.tasks:
            pending.extend(
                await self._restore_task(session, run, project.id, scope, t)
            )
        await self._wire_dependencies(session, run, pending)

    async def _restore_task(
        self,
        session: AsyncSession,
        run: RestoreRun,
        project_id: str,
        scope: IdMapper,
        t: BackupTask,
    ) -> list[PendingDependency]:
        status_id = scope.get(t.status_ref)
        if not status_id:
            run.warnings.append(
                f'Skipped task "{t.title}": status ref {t.status_ref} not found'
            )
            return []

        task = TaskRecord(
            project_id=project_id,
            status_id=status_id,
            title=t.title,
            description=t.description,
            priority=t.priority,
            position=t.position,
            due_date=_ts(t.due_date),
            start_date=_ts(t.start_date),
            created_by_id=run.users.resolve_optional(t.created_by_ref),
        )
        await _insert(session, task)
        run.ids.set(t.original_id, task.id)
        run.counts.tasks += 1

        for ref in t.assignees:
            user_id = run.users.resolve_optional(ref)
            if not user_id:
                continue
            await _try_insert(
                session,
                TaskAssigneeRecord(task_id=task.id, user_id=user_id),
                key=(task.id, user_id),
            )

        for ref in t.labels:
            label_id = scope.get(ref)
            if not label_id:
                continue
            await _try_insert(
                session,
                TaskLabelRecord(task_id=task.id, label_id=label_id),
                key=(task.id, label_id),
            )

        for s in t.subtasks:
            subtask = SubtaskRecord(
                task_id=task.id,
                title=s.title,
                completed=s.completed,
                position=s.position,
                assignee_id=run.users.resolve_optional(s.assignee_ref),
                due_date=_ts(s.due_date),
            )
            await _insert(session, subtask)
            run.ids.set(s.original_id, subtask.id)
            run.counts.subtasks += 1

        for v in t.custom_field_values:
            field_id = scope.get(v.field_ref)
            if not field_id:
                continue
            await _try_insert(
                session,
                CustomFieldValueRecord(task_id=task.id, field_id=field_id, value=v.value),
            )

        for c in t.comments:
            comment = CommentRecord(
                task_id=task.id,
                author_id=run.users.resolve_optional(c.author_ref),
                body=c.body,
                created_at=_ts(c.created_at),
            )
            await _insert(session, comment)
            run.ids.set(c.original_id, comment.id)
            run.counts.comments += 1

        for a in t.activity_logs:
            await _insert(
                session,
                ActivityLogRecord(
                    task_id=task.id,
                    action=a.action,
                    details=a.details,
                    actor_id=run.users.resolve_optional(a.actor_ref),
                    created_at=_ts(a.created_at),
                ),
            )
            run.counts.activity_logs += 1

        return [
            PendingDependency(
                blocked_task_id=task.id,
                task_title=t.title,
                blocking_task_ref=d.blocking_task_ref,
                type=d.type,
            )
            for d in t.dependencies
        ]

    async def _wire_dependencies(
        self,
        session: AsyncSession,
        run: RestoreRun,
        pending: list[PendingDependency],
    ) -> None:
        for dep in pending:
            blocking_id = run.ids.get(dep.blocking_task_ref)
            if not blocking_id:
                run.warnings.append(
                    f'Skipped dependency for task "{dep.task_title}": '
                    f"blocking task ref {dep.blocking_task_ref} not found"
                )
                continue
            await _try_insert(
                session,
                TaskDependencyRecord(
                    blocked_task_id=dep.blocked_task_id,
                    blocking_task_id=blocking_id,
                    type=dep.type,
                ),
                key=(dep.blocked_task_id, blocking_id),
            )

    # ---- Channels ----

    async def _restore_channel(
        self, session: AsyncSession, run: RestoreRun, entry: BackupChannel
    ) -> None:
        attrs = entry.channel
        channel = ChatChannelRecord(
            workspace_id=run.workspace_id,
            name=attrs.name,
            description=attrs.description,
            type=attrs.type,
            created_by_id=run.acting_admin_id,
        )
        await _insert(session, channel)
        run.counts.channels += 1

        member_ids: list[str] = []
        for m in entry.members:
            user_id = run.users.resolve_optional(m.user_ref)
            if not user_id or not await self._is_workspace_member(session, run, user_id):
                continue
            member_ids.append(user_id)
        member_ids.append(run.acting_admin_id)
        for user_id in member_ids:
            await _try_insert(
                session,
                ChatChannelMemberRecord(channel_id=channel.id, user_id=user_id),
                key=(channel.id, user_id),
            )

        thread = IdMapper()
        for msg in entry.messages:
            await self._restore_message(session, run, channel.id, thread, msg)

    async def _restore_message(
        self,
        session: AsyncSession,
        run: RestoreRun,
        channel_id: str,
        thread: IdMapper,
        msg: BackupMessage,
    ) -> None:
        parent_id = None
        if msg.parent_ref:
            parent_id = thread.get(msg.parent_ref)
            if not parent_id:
                run.warnings.append(
                    f"Message parent ref {msg.parent_ref} not found; "
                    "restored as top-level message"
                )

        message = ChatMessageRecord(
            channel_id=channel_id,
            user_id=run.users.resolve(msg.user_ref),
            content=msg.content,
            parent_id=parent_id,
            created_at=_ts(msg.created_at),
        )
        await _insert(session, message)
        thread.set(msg.original_id, message.id)
        run.counts.messages += 1

        for r in msg.reactions:
            user_id = run.users.resolve_optional(r.user_ref)
            if not user_id:
                continue
            outcome = await _try_insert(
                session,
                ChatReactionRecord(message_id=message.id, user_id=user_id, emoji=r.emoji),
            )
            if outcome is WriteOutcome.CREATED:
                run.counts.reactions += 1
