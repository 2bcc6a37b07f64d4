from __future__ import annotations

from typing import Any


class PersistenceError(Exception):
    """Base class for every failure surfaced by the persistence layer."""


class ValidationError(PersistenceError):
    """
    A document failed validation. Terminal for that save attempt: never
    retried automatically and never written to the authoritative store.
    """

    def __init__(self, message: str, errors: list[Any] | None = None):
        super().__init__(message)
        self.errors = list(errors or [])


class StorageQuotaError(PersistenceError):
    """The key/value backend refused a write because its byte quota is exhausted."""

    def __init__(self, key: str, needed_bytes: int = 0, quota_bytes: int | None = None):
        msg = f"Storage quota exceeded writing {key!r}"
        if quota_bytes is not None:
            msg += f" (needs {needed_bytes} bytes, quota {quota_bytes})"
        super().__init__(msg)
        self.key = key
        self.needed_bytes = needed_bytes
        self.quota_bytes = quota_bytes


class NetworkError(PersistenceError):
    """
    The remote store could not be reached or answered with a server error.
    Recoverable: callers fall back to local persistence and retry later.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str = "network",
        status_code: int | None = None,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.retryable = retryable


class CorruptionError(PersistenceError):
    """Stored data could not be parsed even after repair, extraction and backup restore."""

    def __init__(self, key: str, original_error: str):
        super().__init__(f"Unrecoverable data under {key!r}: {original_error}")
        self.key = key
        self.original_error = original_error


class ConflictError(PersistenceError):
    """
    Local unsynced edits are newer than the remote copy. Not a failure but a
    decision point: nothing may be written until a side is chosen.
    """

    def __init__(self, document_id: str, local_modified: str | None, remote_modified: str | None):
        super().__init__(
            f"Unresolved conflict for document {document_id!r} "
            f"(local {local_modified}, remote {remote_modified})"
        )
        self.document_id = document_id
        self.local_modified = local_modified
        self.remote_modified = remote_modified
