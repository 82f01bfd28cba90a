from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserMappingRow(_CamelModel):
    original_email: str
    original_name: str
    resolved_id: Optional[str] = None
    resolved_name: Optional[str] = None


class RestoreSummary(_CamelModel):
    projects: int = 0
    statuses: int = 0
    labels: int = 0
    custom_fields: int = 0
    tasks: int = 0
    subtasks: int = 0
    comments: int = 0
    activity_logs: int = 0
    channels: int = 0
    messages: int = 0
    reactions: int = 0
    user_mappings: List[UserMappingRow] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class RestoreResponse(_CamelModel):
    data: RestoreSummary
