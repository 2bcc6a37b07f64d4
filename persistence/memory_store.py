from __future__ import annotations

from .errors import StorageQuotaError
from .interfaces import KeyValueStore
from .quota import estimate_size


class MemoryKeyValueStore(KeyValueStore):
    """
    In-process key/value backend with an optional byte quota.

    Entry size is counted as the UTF-8 length of key + value, the same
    estimate the quota layer uses for eviction.
    """

    def __init__(self, *, quota_bytes: int | None = None, initial: dict[str, str] | None = None):
        self._quota = quota_bytes
        self._data: dict[str, str] = dict(initial or {})

    @property
    def quota_bytes(self) -> int | None:
        return self._quota

    def usage_bytes(self) -> int:
        return sum(estimate_size(k, v) for k, v in self._data.items())

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self._quota is not None:
            current = self._data.get(key)
            used = self.usage_bytes() - (estimate_size(key, current) if current is not None else 0)
            needed = estimate_size(key, value)
            if used + needed > self._quota:
                raise StorageQuotaError(key, needed, self._quota)
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data.keys())
