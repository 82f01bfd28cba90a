from __future__ import annotations

import io
import json
import math
import zipfile
from datetime import datetime, timezone
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaError
from pydantic.alias_generators import to_camel

from exceptions import BackupFormatError
from sql_store import MAX_EMOJI_LENGTH


MAX_REPORTED_ISSUES = 5
ZIP_MAGIC = b"PK\x03\x04"
ZIP_JSON_ENTRY = "backup.json"


class _BackupModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
        allow_inf_nan=False,
    )


class _Timestamped(_BackupModel):
    @field_validator("created_at", "due_date", "start_date", check_fields=False)
    @classmethod
    def _assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


# ---- Metadata ----


class UserRef(_BackupModel):
    original_id: str
    email: str
    display_name: str


class SourceWorkspace(_BackupModel):
    name: str
    slug: str


class BackupMetadata(_BackupModel):
    version: Literal["1.0", "1.1"]
    exported_at: datetime
    source_workspace: SourceWorkspace
    user_refs: List[UserRef]


# ---- Projects ----


class BackupStatus(_BackupModel):
    original_id: str = Field(alias="_originalId")
    name: str
    color: Optional[str] = None
    position: float
    is_completion: bool


class BackupLabel(_BackupModel):
    original_id: str = Field(alias="_originalId")
    name: str
    color: str


class BackupCustomField(_BackupModel):
    original_id: str = Field(alias="_originalId")
    name: str
    type: str
    options: Any = None
    required: bool
    position: float


class BackupCustomFieldValue(_BackupModel):
    field_ref: str
    value: Any = None


class BackupDependency(_BackupModel):
    blocking_task_ref: str
    type: str = "blocks"


class BackupComment(_Timestamped):
    original_id: str = Field(alias="_originalId")
    body: str
    author_ref: Optional[str] = None
    created_at: datetime


class BackupActivityLog(_Timestamped):
    original_id: str = Field(alias="_originalId")
    action: str
    details: Any = None
    actor_ref: Optional[str] = None
    created_at: datetime


class BackupSubtask(_Timestamped):
    original_id: str = Field(alias="_originalId")
    title: str
    completed: bool
    position: float
    assignee_ref: Optional[str] = None
    due_date: Optional[datetime] = None


class BackupTask(_Timestamped):
    original_id: str = Field(alias="_originalId")
    title: str
    description: Optional[str] = None
    priority: str
    position: float
    due_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    status_ref: str
    created_by_ref: Optional[str] = None
    assignees: List[str] = Field(default_factory=list)
    labels: List[str] = Field(default_factory=list)
    subtasks: List[BackupSubtask] = Field(default_factory=list)
    custom_field_values: List[BackupCustomFieldValue] = Field(default_factory=list)
    dependencies: List[BackupDependency] = Field(default_factory=list)
    comments: List[BackupComment] = Field(default_factory=list)
    activity_logs: List[BackupActivityLog] = Field(default_factory=list)


class BackupMember(_BackupModel):
    user_ref: str


class BackupAttachment(_BackupModel):
    original_id: str = Field(alias="_originalId")
    entity_type: str
    entity_ref: str
    name: str
    mime_type: str
    size: float
    asset_path: str
    uploaded_by_ref: Optional[str] = None


class ProjectAttributes(_BackupModel):
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None


class BackupProject(_BackupModel):
    project: ProjectAttributes
    statuses: List[BackupStatus] = Field(default_factory=list)
    labels: List[BackupLabel] = Field(default_factory=list)
    custom_fields: List[BackupCustomField] = Field(default_factory=list)
    members: List[BackupMember] = Field(default_factory=list)
    tasks: List[BackupTask] = Field(default_factory=list)
    attachments: List[BackupAttachment] = Field(default_factory=list)


# ---- Channels ----


class BackupReaction(_BackupModel):
    user_ref: str
    emoji: str = Field(max_length=MAX_EMOJI_LENGTH)


class BackupMessage(_Timestamped):
    original_id: str = Field(alias="_originalId")
    content: str
    user_ref: str
    parent_ref: Optional[str] = None
    created_at: datetime
    reactions: List[BackupReaction] = Field(default_factory=list)


class ChannelAttributes(_BackupModel):
    name: Optional[str] = None
    description: Optional[str] = None
    type: Literal["PUBLIC", "PRIVATE"]


class BackupChannel(_BackupModel):
    channel: ChannelAttributes
    members: List[BackupMember] = Field(default_factory=list)
    messages: List[BackupMessage] = Field(default_factory=list)


# ---- Wiki (accepted, never restored) ----


class BackupWikiPage(_BackupModel):
    original_id: str = Field(alias="_originalId")
    title: str
    position: float
    parent_ref: Optional[str] = None
    comments: List[Any] = Field(default_factory=list)


class WikiSpaceAttributes(_BackupModel):
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None


class BackupWikiSpace(_BackupModel):
    space: WikiSpaceAttributes
    pages: List[BackupWikiPage] = Field(default_factory=list)


class BackupFile(_BackupModel):
    metadata: BackupMetadata
    projects: List[BackupProject] = Field(default_factory=list)
    channels: List[BackupChannel] = Field(default_factory=list)
    wiki_spaces: List[BackupWikiSpace] = Field(default_factory=list)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant {name}")


def _finite_float(text: str) -> float:
    v = float(text)
    if not math.isfinite(v):
        raise ValueError(f"number out of range: {text}")
    return v


def _format_issue(err: dict[str, Any]) -> str:
    loc = ".".join(str(p) for p in (err.get("loc") or ()))
    msg = str(err.get("msg") or "invalid value")
    return f"{loc}: {msg}" if loc else msg


def parse_backup_file(raw: bytes) -> BackupFile:
    """
    Decode and validate a backup document.

    Raises BackupFormatError when the bytes are not UTF-8 JSON or the document
    does not match the backup schema. At most the first five schema issues are
    reported.
    """
    try:
        doc = json.loads(
            bytes(raw).decode("utf-8"),
            parse_constant=_reject_constant,
            parse_float=_finite_float,
        )
    except (UnicodeDecodeError, ValueError, RecursionError) as e:
        raise BackupFormatError("Invalid JSON file") from e
    if not isinstance(doc, dict):
        raise BackupFormatError("Invalid backup file format: document must be an object")
    try:
        return BackupFile.model_validate(doc)
    except SchemaError as e:
        issues = [
            _format_issue(err)
            for err in e.errors(include_url=False)[:MAX_REPORTED_ISSUES]
        ]
        raise BackupFormatError(
            f"Invalid backup file format: {'; '.join(issues)}"
        ) from e


def is_zip_payload(raw: bytes) -> bool:
    return bytes(raw[:4]) == ZIP_MAGIC


def extract_backup_json(
    raw: bytes, filename: str | None = None, *, max_json_bytes: int = 0
) -> bytes:
    """
    Return the backup document bytes from an uploaded `.json` or `.zip` file.

    Zip archives must carry `backup.json` at the root. Bundled `assets/`
    entries are ignored.
    """
    name = str(filename or "").strip().lower()
    if name and not (name.endswith(".json") or name.endswith(".zip")):
        raise BackupFormatError("Only .json and .zip files are accepted")
    if not (name.endswith(".zip") or is_zip_payload(raw)):
        return bytes(raw)

    try:
        with zipfile.ZipFile(io.BytesIO(raw)) as zf:
            try:
                info = zf.getinfo(ZIP_JSON_ENTRY)
            except KeyError as e:
                raise BackupFormatError(
                    "Invalid backup ZIP: missing backup.json"
                ) from e
            if max_json_bytes and int(info.file_size) > int(max_json_bytes):
                raise BackupFormatError("Invalid backup ZIP: backup.json is too large")
            return zf.read(info)
    except zipfile.BadZipFile as e:
        raise BackupFormatError("Invalid backup ZIP") from e
