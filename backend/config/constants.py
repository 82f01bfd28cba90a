from __future__ import annotations

SERVICE_NAME = "pm-workspace-restore"
APP_TITLE = "Workspace Backup Restore"
APP_VERSION = "1.1.0"
