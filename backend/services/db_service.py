from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from alembic import command
from alembic.config import Config as AlembicConfig
from sqlalchemy import event, func, select as sa_select
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

from sql_store import (
    CONTENT_TABLES,
    AuditLogRecord,
    ChatChannelRecord,
    ProjectRecord,
    UserRecord,
    WorkspaceMemberRecord,
    WorkspaceRecord,
)


def _now() -> float:
    return time.time()


def normalize_database_url_async(raw: str) -> str:
    """
    Normalize common DB URL variants to SQLAlchemy AsyncEngine-compatible URLs.

    - mysql://... -> mysql+aiomysql://...
    - mysql+pymysql://... -> mysql+aiomysql://...
    - sqlite:///... or sqlite:////... -> sqlite+aiosqlite:///... or sqlite+aiosqlite:////...
    """
    url = str(raw or "").strip()
    if not url:
        raise ValueError("Empty database URL")
    if url.startswith("mysql://"):
        return "mysql+aiomysql://" + url[len("mysql://") :]
    if url.startswith("mysql+pymysql://"):
        return "mysql+aiomysql://" + url[len("mysql+pymysql://") :]
    if url.startswith("sqlite:") and not url.startswith("sqlite+aiosqlite:"):
        return "sqlite+aiosqlite:" + url[len("sqlite:") :]
    return url


def _configure_sqlite(engine: AsyncEngine) -> None:
    # The sqlite driver's implicit BEGIN breaks SAVEPOINT; emit BEGIN ourselves.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        _ = connection_record
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN")


@dataclass(frozen=True)
class DatabaseHealth:
    ok: bool
    detail: str


@dataclass(frozen=True)
class WorkspaceMember:
    user_id: str
    email: str
    display_name: str
    role: str


class DatabaseService:
    """
    SQLModel-based DB service with an async API.

    Implementation note:
    - Uses a true SQLAlchemy AsyncEngine + AsyncSession.
    - Requires an async DB driver (aiomysql/aiosqlite) and `greenlet` for SQLAlchemy's
      asyncio support.
    - Restore writes open their own transaction on `engine`; the helpers here each
      use a short-lived session.
    """

    def __init__(
        self,
        *,
        database_url: str,
        echo: bool = False,
        migrate_on_startup: bool = True,
    ) -> None:
        self.database_url = str(database_url).strip()
        self.migrate_on_startup = bool(migrate_on_startup)
        async_url = normalize_database_url_async(self.database_url)
        connect_args: Dict[str, Any] = {}
        is_sqlite = async_url.startswith("sqlite+aiosqlite:")
        if is_sqlite:
            # SQLite driver uses a thread internally; disable same-thread checks.
            connect_args["check_same_thread"] = False
        self.engine: AsyncEngine = create_async_engine(
            async_url,
            echo=bool(echo),
            pool_pre_ping=True,
            connect_args=connect_args,
        )
        if is_sqlite:
            _configure_sqlite(self.engine)

    async def init(self) -> None:
        if not self.migrate_on_startup:
            health = await self.health()
            if not health.ok:
                raise RuntimeError(f"Database health check failed: {health.detail}")
            return
        # Use Alembic migrations for schema setup/updates.
        for attempt in range(2):
            try:
                await self._run_migrations()
                break
            except Exception:
                if attempt >= 1:
                    raise
                await asyncio.sleep(0.25)

    def _alembic_config(self) -> AlembicConfig:
        base_dir = Path(__file__).resolve().parents[1]
        ini_path = base_dir / "alembic.ini"
        cfg = AlembicConfig(str(ini_path))
        cfg.set_main_option("script_location", str(base_dir / "alembic"))
        cfg.set_main_option("sqlalchemy.url", self.database_url)
        cfg.attributes["configure_logger"] = False
        return cfg

    async def _run_migrations(self) -> None:
        cfg = self._alembic_config()
        await asyncio.to_thread(command.upgrade, cfg, "head")

    async def close(self) -> None:
        try:
            await self.engine.dispose()
        except Exception:
            pass

    async def health(self) -> DatabaseHealth:
        try:
            async with AsyncSession(self.engine) as session:
                res = await session.exec(sa_select(1))
                _ = res.one()
            return DatabaseHealth(ok=True, detail="ok")
        except Exception as e:
            return DatabaseHealth(ok=False, detail=str(e))

    # ---- Users / workspaces ----

    async def create_user(self, *, email: str, display_name: str = "") -> str:
        addr = str(email or "").strip()
        if not addr:
            raise ValueError("email is required")
        async with AsyncSession(self.engine) as session:
            rec = UserRecord(email=addr, display_name=str(display_name or ""))
            user_id = rec.id
            session.add(rec)
            await session.commit()
            return user_id

    async def create_workspace(self, *, name: str, slug: str) -> str:
        async with AsyncSession(self.engine) as session:
            rec = WorkspaceRecord(name=str(name or ""), slug=str(slug or "").strip())
            workspace_id = rec.id
            session.add(rec)
            await session.commit()
            return workspace_id

    async def add_workspace_member(
        self, *, workspace_id: str, user_id: str, role: str = "MEMBER"
    ) -> None:
        async with AsyncSession(self.engine) as session:
            rec = await session.get(WorkspaceMemberRecord, (workspace_id, user_id))
            if rec is None:
                session.add(
                    WorkspaceMemberRecord(
                        workspace_id=workspace_id,
                        user_id=user_id,
                        role=str(role or "MEMBER").upper(),
                    )
                )
            else:
                rec.role = str(role or rec.role).upper()
            await session.commit()

    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        async with AsyncSession(self.engine) as session:
            rec = await session.get(UserRecord, str(user_id))
            if rec is None:
                return None
            return rec.model_dump()

    async def get_workspace_role(self, *, workspace_id: str, user_id: str) -> str | None:
        async with AsyncSession(self.engine) as session:
            rec = await session.get(
                WorkspaceMemberRecord, (str(workspace_id), str(user_id))
            )
            if rec is None:
                return None
            return str(rec.role)

    async def list_workspace_members(self, workspace_id: str) -> list[WorkspaceMember]:
        async with AsyncSession(self.engine) as session:
            stmt = (
                select(WorkspaceMemberRecord, UserRecord)
                .join(UserRecord, UserRecord.id == WorkspaceMemberRecord.user_id)
                .where(WorkspaceMemberRecord.workspace_id == str(workspace_id))
                .order_by(WorkspaceMemberRecord.joined_at)
            )
            rows = (await session.exec(stmt)).all()
            return [
                WorkspaceMember(
                    user_id=user.id,
                    email=user.email,
                    display_name=user.display_name,
                    role=member.role,
                )
                for member, user in rows
            ]

    async def content_counts(
        self, *, tables: Iterable[type[SQLModel]] = CONTENT_TABLES
    ) -> dict[str, int]:
        """
        Row counts per content table (all workspaces).
        """
        out: dict[str, int] = {}
        async with AsyncSession(self.engine) as session:
            for model in tables:
                res = await session.exec(sa_select(func.count()).select_from(model))
                out[str(model.__tablename__)] = int(res.one()[0] or 0)
        return out

    async def workspace_stats(self, workspace_id: str) -> dict[str, int]:
        wid = str(workspace_id)
        async with AsyncSession(self.engine) as session:
            projects = await session.exec(
                sa_select(func.count())
                .select_from(ProjectRecord)
                .where(ProjectRecord.workspace_id == wid)
            )
            channels = await session.exec(
                sa_select(func.count())
                .select_from(ChatChannelRecord)
                .where(ChatChannelRecord.workspace_id == wid)
            )
            return {
                "projects": int(projects.one()[0] or 0),
                "channels": int(channels.one()[0] or 0),
            }

    # ---- Audit log ----

    async def add_audit_log(
        self,
        *,
        action: str,
        actor: str,
        ok: bool = True,
        workspace_id: str | None = None,
        resource: str | None = None,
        error: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
        request_id: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        act = str(action or "").strip()
        who = str(actor or "").strip()
        if not act or not who:
            return
        now = _now()
        async with AsyncSession(self.engine) as session:
            rec = AuditLogRecord(
                workspace_id=str(workspace_id or "") or None,
                created_at=now,
                actor=who,
                action=act,
                resource=str(resource or "")[:256] or None,
                ok=bool(ok),
                error=str(error)[:512] if error else None,
                ip=str(ip)[:64] if ip else None,
                user_agent=str(user_agent)[:256] if user_agent else None,
                request_id=str(request_id)[:64] if request_id else None,
                payload=dict(payload or {}),
            )
            session.add(rec)
            await session.commit()

    async def list_audit_logs(
        self,
        *,
        limit: int = 200,
        workspace_id: Optional[str] = None,
        action: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        lim = max(1, int(limit))
        async with AsyncSession(self.engine) as session:
            stmt = select(AuditLogRecord)
            if workspace_id:
                stmt = stmt.where(AuditLogRecord.workspace_id == str(workspace_id))
            if action:
                stmt = stmt.where(AuditLogRecord.action == str(action))
            stmt = stmt.order_by(AuditLogRecord.created_at.desc()).limit(lim)
            rows = (await session.exec(stmt)).all()
            return [r.model_dump() for r in rows]
