"""
Parse-with-repair for stored JSON.

Recovery runs as an ordered chain:

1. strict ``json.loads``;
2. the repair steps in ``REPAIR_STEPS`` (each a pure ``str -> str``), then re-parse;
3. extraction of the largest ``{...}`` or ``[...]`` substring;
4. a structured failure carrying the original parse error.

Stored keys get one more rung: before any destructive rewrite the raw value is
copied to ``<key>_backup_<ms>`` (three kept per key), and when nothing else
parses the newest backup is offered instead.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable

from json_store import dumps_compact

from . import keys as K
from .quota import QuotaAwareStore, StoragePriority

logger = logging.getLogger(__name__)

MAX_BACKUPS_PER_KEY = 3

_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_$][A-Za-z0-9_$]*)\s*:")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")

_CLOSERS = {"{": "}", "[": "]"}


@dataclass
class ParseResult:
    success: bool
    data: Any = None
    error: str | None = None
    recovered: bool = False
    strategy: str | None = None  # strict | repaired | extracted | backup


def split_strings(text: str) -> list[tuple[bool, str]]:
    """
    Split JSON-ish text into (inside_string, chunk) segments.

    Quotes are included in the string chunks; an unterminated string runs to
    the end of the text.
    """
    segments: list[tuple[bool, str]] = []
    buf: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            buf.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                segments.append((True, "".join(buf)))
                buf = []
                in_string = False
        elif ch == '"':
            if buf:
                segments.append((False, "".join(buf)))
            buf = [ch]
            in_string = True
        else:
            buf.append(ch)
    if buf:
        segments.append((in_string, "".join(buf)))
    return segments


def _map_outside_strings(text: str, fn: Callable[[str], str]) -> str:
    return "".join(chunk if is_str else fn(chunk) for is_str, chunk in split_strings(text))


def strip_bom(text: str) -> str:
    return text[1:] if text.startswith("\ufeff") else text


def balance_delimiters(text: str) -> str:
    """Close an unterminated string and any braces/brackets left open, innermost first."""
    stack: list[str] = []
    segments = split_strings(text.rstrip())
    for is_str, chunk in segments:
        if is_str:
            continue
        for ch in chunk:
            if ch in _CLOSERS:
                stack.append(ch)
            elif ch in ("}", "]") and stack and _CLOSERS[stack[-1]] == ch:
                stack.pop()
    repaired = "".join(chunk for _, chunk in segments)
    if segments and segments[-1][0] and not _is_closed_string(segments[-1][1]):
        repaired += '"'
    return repaired + "".join(_CLOSERS[opener] for opener in reversed(stack))


def _is_closed_string(chunk: str) -> bool:
    if len(chunk) < 2 or not chunk.endswith('"'):
        return False
    # An odd run of backslashes before the final quote escapes it.
    backslashes = len(chunk[:-1]) - len(chunk[:-1].rstrip("\\"))
    return backslashes % 2 == 0


def drop_trailing_commas(text: str) -> str:
    return _map_outside_strings(text, lambda chunk: _TRAILING_COMMA_RE.sub(r"\1", chunk))


def quote_bare_keys(text: str) -> str:
    return _map_outside_strings(text, lambda chunk: _BARE_KEY_RE.sub(r'\1"\2":', chunk))


REPAIR_STEPS: tuple[Callable[[str], str], ...] = (
    strip_bom,
    balance_delimiters,
    drop_trailing_commas,
    quote_bare_keys,
)


def repair_json(text: str) -> str:
    repaired = text.strip()
    for step in REPAIR_STEPS:
        repaired = step(repaired)
    return repaired


def extract_partial_data(text: str) -> Any | None:
    """Parse the widest object substring, then the widest array substring."""
    for pattern in (_OBJECT_RE, _ARRAY_RE):
        match = pattern.search(text)
        if not match:
            continue
        try:
            return json.loads(match.group(0))
        except ValueError:
            continue
    return None


def parse_with_recovery(text: str | None, key: str | None = None) -> ParseResult:
    label = key or "unknown"
    if not text:
        return ParseResult(success=False, error="Empty or null JSON string")

    try:
        return ParseResult(success=True, data=json.loads(text), strategy="strict")
    except ValueError as e:
        original_error = str(e)
        logger.warning("JSON parse error for key %r: %s", label, e)

    try:
        data = json.loads(repair_json(text))
        logger.info("Recovered corrupted data for key %r by repair", label)
        return ParseResult(success=True, data=data, recovered=True, strategy="repaired")
    except ValueError as e:
        logger.debug("Repair failed for key %r: %s", label, e)

    partial = extract_partial_data(text)
    if partial is not None:
        logger.info("Extracted partial data for key %r", label)
        return ParseResult(success=True, data=partial, recovered=True, strategy="extracted")

    return ParseResult(success=False, error=original_error)


# --- backups ---------------------------------------------------------------


def list_backups(store: QuotaAwareStore, key: str) -> list[str]:
    """Backup keys for `key`, newest first."""
    prefix = K.backup_prefix(key)
    return sorted((k for k in store.keys() if k.startswith(prefix)), reverse=True)


def create_backup(store: QuotaAwareStore, key: str, raw: str, *, now_ms: int | None = None) -> str | None:
    stamp = int(time.time() * 1000) if now_ms is None else now_ms
    existing = set(list_backups(store, key))
    backup_key = f"{K.backup_prefix(key)}{stamp:013d}"
    while backup_key in existing:
        stamp += 1
        backup_key = f"{K.backup_prefix(key)}{stamp:013d}"

    result = store.set(backup_key, raw, StoragePriority.LOW)
    if not result.success:
        logger.warning("Could not create backup of %s: %s", key, result.error)
        return None

    for stale in list_backups(store, key)[MAX_BACKUPS_PER_KEY:]:
        store.remove(stale)
    return backup_key


def load_with_recovery(store: QuotaAwareStore, key: str, *, rewrite: bool = True) -> ParseResult:
    """
    Read `key` and parse it through the full recovery chain.

    A repaired value is written back in canonical form (after backing up the
    damaged original) when `rewrite` is set. Missing keys are a failure with
    strategy None and no error noise.
    """
    raw = store.get(key)
    if raw is None:
        return ParseResult(success=False, error="missing")

    result = parse_with_recovery(raw, key)
    if result.success and not result.recovered:
        return result

    if result.success:
        create_backup(store, key, raw)
        if rewrite:
            store.set(key, dumps_compact(result.data))
        return result

    for backup_key in list_backups(store, key):
        backup_result = parse_with_recovery(store.get(backup_key), backup_key)
        if not backup_result.success:
            continue
        logger.warning("Restoring %s from backup %s", key, backup_key)
        if rewrite:
            # The unreadable value becomes the newest backup; the good one stays behind it.
            create_backup(store, key, raw)
            store.set(key, dumps_compact(backup_result.data))
        return ParseResult(success=True, data=backup_result.data, recovered=True, strategy="backup")

    logger.error("Unrecoverable data under %s: %s", key, result.error)
    return result
