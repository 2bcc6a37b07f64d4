from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Storage locations
    data_dir: str

    # Remote authoritative store
    remote_base_url: str
    remote_timeout_s: float
    remote_retries: int
    remote_retry_delay_ms: int

    # Save orchestration
    save_debounce_ms: int
    undo_limit: int

    # Local key/value quota
    local_quota_bytes: int
    reclaim_target_bytes: int

    # Version history retention
    version_max_age_days: int
    max_versions_per_document: int
    max_versions_total: int
    version_save_retries: int
    version_retry_delay_ms: int

    # Debug
    debug_log_requests: bool


def get_settings() -> Settings:
    data_dir = os.getenv("DATA_DIR", "")

    # Empty means "use the on-disk remote store in-process".
    remote_base_url = (os.getenv("REMOTE_BASE_URL", "")).rstrip("/")
    remote_timeout_s = _env_float("REMOTE_TIMEOUT_S", 10.0)
    remote_retries = _env_int("REMOTE_RETRIES", 2)
    remote_retry_delay_ms = _env_int("REMOTE_RETRY_DELAY_MS", 250)

    save_debounce_ms = _env_int("SAVE_DEBOUNCE_MS", 500)
    undo_limit = _env_int("UNDO_LIMIT", 50)

    # Browsers typically give localStorage ~5MB.
    local_quota_bytes = _env_int("LOCAL_QUOTA_BYTES", 5 * 1024 * 1024)
    reclaim_target_bytes = _env_int("RECLAIM_TARGET_BYTES", 1024 * 1024)

    version_max_age_days = _env_int("VERSION_MAX_AGE_DAYS", 90)
    max_versions_per_document = _env_int("MAX_VERSIONS_PER_DOCUMENT", 50)
    max_versions_total = _env_int("MAX_VERSIONS_TOTAL", 500)
    version_save_retries = _env_int("VERSION_SAVE_RETRIES", 2)
    version_retry_delay_ms = _env_int("VERSION_RETRY_DELAY_MS", 100)

    debug_log_requests = _env_bool("DEBUG_LOG_REQUESTS", False)

    return Settings(
        data_dir=data_dir,
        remote_base_url=remote_base_url,
        remote_timeout_s=remote_timeout_s,
        remote_retries=remote_retries,
        remote_retry_delay_ms=remote_retry_delay_ms,
        save_debounce_ms=save_debounce_ms,
        undo_limit=undo_limit,
        local_quota_bytes=local_quota_bytes,
        reclaim_target_bytes=reclaim_target_bytes,
        version_max_age_days=version_max_age_days,
        max_versions_per_document=max_versions_per_document,
        max_versions_total=max_versions_total,
        version_save_retries=version_save_retries,
        version_retry_delay_ms=version_retry_delay_ms,
        debug_log_requests=debug_log_requests,
    )
