"""Classify records as new, changed or unchanged against the hash store."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Sequence

from tenacity import RetryCallState

from postal_sync.common.constants import DYNAMODB_MAX_BATCH_GET
from postal_sync.common.errors import FatalStoreUnavailable, LookupFailed, StoreError, UnprocessedItems
from postal_sync.common.logging import log_event
from postal_sync.common.models import Classification, ClassifiedRecord, HashEntry, PostalCodeRecord
from postal_sync.common.retry import RetryPolicy
from postal_sync.stores.base import HashStore

HashedRecord = tuple[PostalCodeRecord, str]

_module_logger = logging.getLogger(__name__)


@dataclass
class DetectionResult:
    classified: list[ClassifiedRecord] = field(default_factory=list)
    deferred: list[PostalCodeRecord] = field(default_factory=list)
    lookup_error_codes: dict[str, str] = field(default_factory=dict)

    def of(self, classification: Classification) -> list[ClassifiedRecord]:
        return [item for item in self.classified if item.classification is classification]

    def pending_writes(self) -> list[ClassifiedRecord]:
        return [
            item
            for item in self.classified
            if item.classification in (Classification.NEW, Classification.CHANGED)
        ]


def classify(record: PostalCodeRecord, digest: str, prior: HashEntry | None) -> ClassifiedRecord:
    if prior is None:
        classification = Classification.NEW
    elif prior.digest != digest:
        classification = Classification.CHANGED
    else:
        classification = Classification.UNCHANGED
    return ClassifiedRecord(record=record, digest=digest, classification=classification)


class ChangeDetector:
    """Batched hash-store reads followed by per-record classification.

    A code whose lookup cannot be completed is classified LOOKUP_FAILED and
    never reaches the write set.
    """

    def __init__(
        self,
        hash_store: HashStore,
        retry_policy: RetryPolicy | None = None,
        *,
        lookup_batch_size: int = DYNAMODB_MAX_BATCH_GET,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.hash_store = hash_store
        self.retry_policy = retry_policy or RetryPolicy()
        self.lookup_batch_size = min(lookup_batch_size, DYNAMODB_MAX_BATCH_GET)
        self.sleep = sleep
        self.logger = logger or _module_logger

    def _log_retry(self, state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        log_event(
            self.logger,
            "hash lookup retry",
            level=logging.WARNING,
            stage="detect",
            event="LOOKUP_RETRY",
            status="retry",
            attempt=state.attempt_number,
            error_code=getattr(exc, "error_code", None),
        )

    def lookup(self, codes: Sequence[str]) -> tuple[dict[str, HashEntry], list[str], str | None]:
        """Return ``(found, failed codes, error code)`` for one chunk of codes."""
        found: dict[str, HashEntry] = {}
        pending = list(codes)
        try:
            for attempt in self.retry_policy.retrying(sleep=self.sleep, before_sleep=self._log_retry):
                with attempt:
                    entries, unprocessed = self.hash_store.batch_get(pending)
                    found.update(entries)
                    pending = [code for code in unprocessed if code not in found]
                    if pending:
                        raise UnprocessedItems(pending)
        except FatalStoreUnavailable:
            raise
        except StoreError as exc:
            return found, pending, exc.error_code
        return found, [], None

    def detect(
        self,
        hashed: Sequence[HashedRecord],
        *,
        should_continue: Callable[[], bool] = lambda: True,
    ) -> DetectionResult:
        result = DetectionResult()
        seen: set[str] = set()

        for start in range(0, len(hashed), self.lookup_batch_size):
            chunk = hashed[start : start + self.lookup_batch_size]
            if not should_continue():
                result.deferred.extend(record for record, _digest in hashed[start:])
                break

            codes = [record.code for record, _digest in chunk]
            if seen.intersection(codes) or len(set(codes)) != len(codes):
                raise ValueError("Duplicate codes in detection input; consolidate records first")
            seen.update(codes)

            found, failed, error_code = self.lookup(codes)
            failed_set = set(failed)
            for record, digest in chunk:
                if record.code in failed_set:
                    result.classified.append(
                        ClassifiedRecord(record=record, digest=digest, classification=Classification.LOOKUP_FAILED)
                    )
                    result.lookup_error_codes[record.code] = error_code or LookupFailed.error_code
                    continue
                result.classified.append(classify(record, digest, found.get(record.code)))

        return result
