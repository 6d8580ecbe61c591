"""Store contracts for the record table and the hash side table."""

from __future__ import annotations

from typing import Iterable

from postal_sync.common.constants import DYNAMODB_MAX_BATCH_WRITE
from postal_sync.common.models import HashEntry, PostalCodeRecord


class RecordStore:
    """Key-value store of postal-code records keyed by code."""

    max_batch_size: int = DYNAMODB_MAX_BATCH_WRITE

    def check_available(self) -> None:
        """Raise FatalStoreUnavailable when the store cannot be reached."""
        raise NotImplementedError

    def get(self, code: str) -> PostalCodeRecord | None:
        raise NotImplementedError

    def batch_put(self, records: list[PostalCodeRecord]) -> list[str]:
        """Write ``records`` and return the codes the store left unprocessed."""
        raise NotImplementedError


class HashStore:
    """Key-value store of :class:`HashEntry` keyed by the same code."""

    max_batch_size: int = DYNAMODB_MAX_BATCH_WRITE

    def check_available(self) -> None:
        raise NotImplementedError

    def batch_get(self, codes: Iterable[str]) -> tuple[dict[str, HashEntry], list[str]]:
        """Return ``(found entries, unprocessed codes)``; absent codes are in neither."""
        raise NotImplementedError

    def batch_put(self, entries: list[HashEntry]) -> list[str]:
        raise NotImplementedError
