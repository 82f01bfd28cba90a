from __future__ import annotations

import os
from dataclasses import dataclass


def _as_int(val: str | None, default: int) -> int:
    try:
        return int(val) if val is not None and str(val).strip() != "" else default
    except Exception:
        return default


def _as_float(val: str | None, default: float) -> float:
    try:
        return float(val) if val is not None and str(val).strip() != "" else default
    except Exception:
        return default


def _as_bool(val: str | None, default: bool) -> bool:
    if val is None:
        return default
    s = str(val).strip().lower()
    if s in ("1", "true", "yes", "y", "on"):
        return True
    if s in ("0", "false", "no", "n", "off"):
        return False
    return default


def _as_str(val: str | None, default: str) -> str:
    if val is None:
        return default
    s = str(val).strip()
    return s if s else default


def _as_log_level(val: str | None, default: str = "INFO") -> str:
    s = _as_str(val, default).upper()
    if s in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        return s
    return default


@dataclass(frozen=True)
class Settings:
    # Database
    database_url: str
    db_migrate_on_startup: bool
    db_echo: bool

    # Restore
    restore_timeout_s: float  # upper bound for the single restore transaction

    # Upload limits
    backup_max_upload_mb: int
    backup_spool_max_mb: int

    # Logging
    log_level: str


def load_settings() -> Settings:
    database_url = os.environ.get("DATABASE_URL", "").strip()
    if not database_url:
        raise RuntimeError(
            "DATABASE_URL is required (e.g. mysql://pm:pm@db:3306/pm or sqlite:////data/pm.sqlite)"
        )
    db_migrate_on_startup = _as_bool(os.environ.get("DB_MIGRATE_ON_STARTUP"), True)
    db_echo = _as_bool(os.environ.get("DB_ECHO"), False)

    restore_timeout_s = max(1.0, _as_float(os.environ.get("RESTORE_TIMEOUT_S"), 120.0))

    backup_max_upload_mb = max(
        1, _as_int(os.environ.get("BACKUP_MAX_UPLOAD_MB"), 256)
    )
    backup_spool_max_mb = max(1, _as_int(os.environ.get("BACKUP_SPOOL_MAX_MB"), 50))

    log_level = _as_log_level(os.environ.get("LOG_LEVEL"))

    return Settings(
        database_url=database_url,
        db_migrate_on_startup=bool(db_migrate_on_startup),
        db_echo=bool(db_echo),
        restore_timeout_s=restore_timeout_s,
        backup_max_upload_mb=backup_max_upload_mb,
        backup_spool_max_mb=backup_spool_max_mb,
        log_level=log_level,
    )
