"""Local storage key names shared by the cache, history and quota layers."""

from __future__ import annotations

# Critical
CURRENT_DOCUMENT_ID_KEY = "smart_resume_studio_current_resume_id"
CURRENT_DOCUMENT_KEY = "resume-data"
DIRTY_FLAG_KEY = "resume_dirty_flag"
DIRTY_DATA_KEY = "resume_dirty_data"
DIRTY_LAST_MODIFIED_KEY = "resume_last_modified"
PRIORITY_LEDGER_KEY = "storage_priority_ledger"

# High
SAVED_DOCUMENTS_KEY = "smart_resume_studio_resumes"
VERSION_HISTORY_KEY = "resume_version_history"

# Low
VERSION_SAVE_FAILURES_KEY = "version_save_failures"

BACKUP_MARKER = "_backup_"


def backup_prefix(key: str) -> str:
    return f"{key}{BACKUP_MARKER}"


def is_backup_key(key: str) -> bool:
    return BACKUP_MARKER in key
