from __future__ import annotations

import time
import uuid
from typing import Any, Dict

from sqlalchemy import Column, Index, Text, UniqueConstraint
from sqlalchemy.types import JSON
from sqlmodel import Field, SQLModel


MAX_EMOJI_LENGTH = 64


def new_id() -> str:
    return uuid.uuid4().hex


def _now() -> float:
    return time.time()


def _text(default: str | None = "") -> Any:
    # Restored user content has no length bound; TEXT on every dialect.
    return Field(default=default, sa_column=Column(Text, nullable=default is None))


class UserRecord(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    email: str = Field(index=True, unique=True, max_length=320)
    display_name: str = Field(default="", max_length=256)
    created_at: float = Field(default_factory=_now, index=True)


class WorkspaceRecord(SQLModel, table=True):
    __tablename__ = "workspaces"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    name: str = Field(max_length=256)
    slug: str = Field(index=True, unique=True, max_length=128)
    created_at: float = Field(default_factory=_now, index=True)


class WorkspaceMemberRecord(SQLModel, table=True):
    """
    Workspace membership. `role` is one of ADMIN, MEMBER, GUEST.
    """

    __tablename__ = "workspace_members"

    workspace_id: str = Field(
        primary_key=True, foreign_key="workspaces.id", max_length=32
    )
    user_id: str = Field(primary_key=True, foreign_key="users.id", max_length=32)
    role: str = Field(default="MEMBER", index=True, max_length=16)
    joined_at: float = Field(default_factory=_now)


class ProjectRecord(SQLModel, table=True):
    __tablename__ = "projects"
    __table_args__ = (
        Index("ix_projects_workspace_created_at", "workspace_id", "created_at"),
    )

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    workspace_id: str = Field(foreign_key="workspaces.id", max_length=32)
    name: str = _text()
    description: str | None = _text(None)
    color: str | None = _text(None)
    icon: str | None = _text(None)
    created_at: float = Field(default_factory=_now)


class ProjectMemberRecord(SQLModel, table=True):
    __tablename__ = "project_members"

    project_id: str = Field(primary_key=True, foreign_key="projects.id", max_length=32)
    user_id: str = Field(primary_key=True, foreign_key="users.id", max_length=32)


class StatusColumnRecord(SQLModel, table=True):
    __tablename__ = "status_columns"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    project_id: str = Field(index=True, foreign_key="projects.id", max_length=32)
    name: str = _text()
    color: str | None = _text(None)
    position: float = Field(default=0.0)
    is_completion: bool = Field(default=False)


class LabelRecord(SQLModel, table=True):
    __tablename__ = "labels"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    project_id: str = Field(index=True, foreign_key="projects.id", max_length=32)
    name: str = _text()
    color: str = _text()


class CustomFieldRecord(SQLModel, table=True):
    __tablename__ = "custom_fields"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    project_id: str = Field(index=True, foreign_key="projects.id", max_length=32)
    name: str = _text()
    type: str = _text()
    options: Any = Field(default=None, sa_column=Column(JSON, nullable=True))
    required: bool = Field(default=False)
    position: float = Field(default=0.0)


class TaskRecord(SQLModel, table=True):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_project_status", "project_id", "status_id"),
    )

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    project_id: str = Field(foreign_key="projects.id", max_length=32)
    status_id: str = Field(foreign_key="status_columns.id", max_length=32)
    title: str = _text()
    description: str | None = _text(None)
    priority: str = _text("NONE")
    position: float = Field(default=0.0)
    due_date: float | None = None
    start_date: float | None = None
    created_by_id: str | None = Field(
        default=None, foreign_key="users.id", max_length=32
    )
    created_at: float = Field(default_factory=_now)


class TaskAssigneeRecord(SQLModel, table=True):
    __tablename__ = "task_assignees"

    task_id: str = Field(primary_key=True, foreign_key="tasks.id", max_length=32)
    user_id: str = Field(primary_key=True, foreign_key="users.id", max_length=32)


class TaskLabelRecord(SQLModel, table=True):
    __tablename__ = "task_labels"

    task_id: str = Field(primary_key=True, foreign_key="tasks.id", max_length=32)
    label_id: str = Field(primary_key=True, foreign_key="labels.id", max_length=32)


class SubtaskRecord(SQLModel, table=True):
    __tablename__ = "subtasks"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    task_id: str = Field(index=True, foreign_key="tasks.id", max_length=32)
    title: str = _text()
    completed: bool = Field(default=False)
    position: float = Field(default=0.0)
    assignee_id: str | None = Field(default=None, foreign_key="users.id", max_length=32)
    due_date: float | None = None


class CustomFieldValueRecord(SQLModel, table=True):
    __tablename__ = "custom_field_values"
    __table_args__ = (
        UniqueConstraint("task_id", "field_id", name="uq_custom_field_values_task_field"),
    )

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    task_id: str = Field(index=True, foreign_key="tasks.id", max_length=32)
    field_id: str = Field(foreign_key="custom_fields.id", max_length=32)
    value: Any = Field(default=None, sa_column=Column(JSON, nullable=True))


class TaskDependencyRecord(SQLModel, table=True):
    """
    Directed edge: `blocking_task_id` blocks `blocked_task_id`.
    """

    __tablename__ = "task_dependencies"

    blocked_task_id: str = Field(
        primary_key=True, foreign_key="tasks.id", max_length=32
    )
    blocking_task_id: str = Field(
        primary_key=True, foreign_key="tasks.id", max_length=32
    )
    type: str = _text("blocks")


class CommentRecord(SQLModel, table=True):
    __tablename__ = "comments"
    __table_args__ = (Index("ix_comments_task_created_at", "task_id", "created_at"),)

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    task_id: str = Field(foreign_key="tasks.id", max_length=32)
    author_id: str | None = Field(default=None, foreign_key="users.id", max_length=32)
    body: str = _text()
    created_at: float = Field(default_factory=_now)


class ActivityLogRecord(SQLModel, table=True):
    __tablename__ = "activity_logs"
    __table_args__ = (
        Index("ix_activity_logs_task_created_at", "task_id", "created_at"),
    )

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    task_id: str = Field(foreign_key="tasks.id", max_length=32)
    action: str = _text()
    details: Any = Field(default=None, sa_column=Column(JSON, nullable=True))
    actor_id: str | None = Field(default=None, foreign_key="users.id", max_length=32)
    created_at: float = Field(default_factory=_now)


class ChatChannelRecord(SQLModel, table=True):
    __tablename__ = "chat_channels"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    workspace_id: str = Field(index=True, foreign_key="workspaces.id", max_length=32)
    name: str | None = _text(None)
    description: str | None = _text(None)
    type: str = Field(default="PUBLIC", max_length=16)
    created_by_id: str = Field(foreign_key="users.id", max_length=32)
    created_at: float = Field(default_factory=_now)


class ChatChannelMemberRecord(SQLModel, table=True):
    __tablename__ = "chat_channel_members"

    channel_id: str = Field(
        primary_key=True, foreign_key="chat_channels.id", max_length=32
    )
    user_id: str = Field(primary_key=True, foreign_key="users.id", max_length=32)


class ChatMessageRecord(SQLModel, table=True):
    """
    Channel message. Replies point at their thread root via `parent_id`.
    """

    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_messages_channel_created_at", "channel_id", "created_at"),
    )

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    channel_id: str = Field(foreign_key="chat_channels.id", max_length=32)
    user_id: str = Field(foreign_key="users.id", max_length=32)
    content: str = _text()
    parent_id: str | None = Field(
        default=None, foreign_key="chat_messages.id", max_length=32
    )
    created_at: float = Field(default_factory=_now)


class ChatReactionRecord(SQLModel, table=True):
    __tablename__ = "chat_reactions"
    __table_args__ = (
        UniqueConstraint(
            "message_id", "user_id", "emoji", name="uq_chat_reactions_message_user_emoji"
        ),
    )

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    message_id: str = Field(index=True, foreign_key="chat_messages.id", max_length=32)
    user_id: str = Field(foreign_key="users.id", max_length=32)
    emoji: str = Field(max_length=MAX_EMOJI_LENGTH)


class AuditLogRecord(SQLModel, table=True):
    """
    Audit log for admin actions such as backup preview/restore (append-only).
    """

    __tablename__ = "audit_log"
    __table_args__ = (
        Index("ix_audit_log_workspace_created_at", "workspace_id", "created_at"),
        Index("ix_audit_log_action_created_at", "action", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    workspace_id: str | None = Field(default=None, index=True, max_length=32)

    created_at: float = Field(index=True)
    actor: str = Field(index=True, max_length=128)
    action: str = Field(index=True, max_length=128)
    resource: str | None = Field(default=None, max_length=256)

    ok: bool = Field(default=True, index=True)
    error: str | None = Field(default=None, max_length=512)

    ip: str | None = Field(default=None, max_length=64)
    user_agent: str | None = Field(default=None, max_length=256)
    request_id: str | None = Field(default=None, max_length=64)

    payload: Dict[str, Any] = Field(sa_column=Column(JSON), default_factory=dict)


# Restorable content tables, parents before children.
CONTENT_TABLES: tuple[type[SQLModel], ...] = (
    ProjectRecord,
    ProjectMemberRecord,
    StatusColumnRecord,
    LabelRecord,
    CustomFieldRecord,
    TaskRecord,
    TaskAssigneeRecord,
    TaskLabelRecord,
    SubtaskRecord,
    CustomFieldValueRecord,
    TaskDependencyRecord,
    CommentRecord,
    ActivityLogRecord,
    ChatChannelRecord,
    ChatChannelMemberRecord,
    ChatMessageRecord,
    ChatReactionRecord,
)
