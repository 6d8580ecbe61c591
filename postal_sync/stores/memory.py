"""In-memory stores for local runs and tests."""

from __future__ import annotations

import threading
from typing import Iterable

from postal_sync.common.errors import StoreError
from postal_sync.common.models import HashEntry, PostalCodeRecord
from postal_sync.stores.base import HashStore, RecordStore


def _check_batch(items: list, limit: int, kind: str) -> None:
    if len(items) > limit:
        raise StoreError(f"{kind} batch of {len(items)} exceeds limit {limit}")
    keys = [getattr(item, "code", None) or getattr(item, "id", None) for item in items]
    if len(set(keys)) != len(keys):
        raise StoreError(f"{kind} batch contains duplicate keys")


class InMemoryRecordStore(RecordStore):
    def __init__(self, max_batch_size: int | None = None) -> None:
        if max_batch_size is not None:
            self.max_batch_size = max_batch_size
        self.items: dict[str, PostalCodeRecord] = {}
        self.write_requests: list[list[str]] = []
        self.lock = threading.Lock()

    def check_available(self) -> None:
        return None

    def get(self, code: str) -> PostalCodeRecord | None:
        with self.lock:
            return self.items.get(code)

    def batch_put(self, records: list[PostalCodeRecord]) -> list[str]:
        _check_batch(records, self.max_batch_size, "record")
        with self.lock:
            self.write_requests.append([record.code for record in records])
            for record in records:
                self.items[record.code] = record
        return []


class InMemoryHashStore(HashStore):
    def __init__(self, max_batch_size: int | None = None, entries: Iterable[HashEntry] = ()) -> None:
        if max_batch_size is not None:
            self.max_batch_size = max_batch_size
        self.entries: dict[str, HashEntry] = {entry.id: entry for entry in entries}
        self.read_requests: list[list[str]] = []
        self.write_requests: list[list[str]] = []
        self.lock = threading.Lock()

    def check_available(self) -> None:
        return None

    def batch_get(self, codes: Iterable[str]) -> tuple[dict[str, HashEntry], list[str]]:
        codes = list(codes)
        with self.lock:
            self.read_requests.append(codes)
            found = {code: self.entries[code] for code in codes if code in self.entries}
        return found, []

    def batch_put(self, entries: list[HashEntry]) -> list[str]:
        _check_batch(entries, self.max_batch_size, "hash")
        with self.lock:
            self.write_requests.append([entry.id for entry in entries])
            for entry in entries:
                self.entries[entry.id] = entry
        return []
