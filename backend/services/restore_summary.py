from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Iterable

from models.responses import RestoreSummary, UserMappingRow
from services.backup_format import BackupFile
from services.restore_mapping import UserMapper


@dataclass
class RestoreCounts:
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

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def count_backup(backup: BackupFile) -> RestoreCounts:
    counts = RestoreCounts(
        projects=len(backup.projects),
        channels=len(backup.channels),
    )
    for p in backup.projects:
        counts.statuses += len(p.statuses)
        counts.labels += len(p.labels)
        counts.custom_fields += len(p.custom_fields)
        counts.tasks += len(p.tasks)
        for t in p.tasks:
            counts.subtasks += len(t.subtasks)
            counts.comments += len(t.comments)
            counts.activity_logs += len(t.activity_logs)
    for c in backup.channels:
        counts.messages += len(c.messages)
        for m in c.messages:
            counts.reactions += len(m.reactions)
    return counts


def unsupported_content_warnings(backup: BackupFile) -> list[str]:
    out: list[str] = []
    for p in backup.projects:
        if p.attachments:
            out.append(
                f"Skipped {len(p.attachments)} attachment(s) in project "
                f'"{p.project.name}": file attachments are not restored'
            )
    if backup.wiki_spaces:
        out.append(
            f"Skipped {len(backup.wiki_spaces)} wiki space(s): "
            "wiki content is not restored"
        )
    return out


def build_summary(
    counts: RestoreCounts,
    user_mapper: UserMapper,
    warnings: Iterable[str],
) -> RestoreSummary:
    rows = [
        UserMappingRow(
            original_email=m.original_email,
            original_name=m.original_name,
            resolved_id=m.resolved_id,
            resolved_name=m.resolved_name,
        )
        for m in user_mapper.get_mappings()
    ]
    return RestoreSummary(
        **counts.as_dict(),
        user_mappings=rows,
        warnings=[str(w) for w in warnings],
    )
