"""Bounded, retry-safe batch writes of record + hash pairs."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Iterable

from tenacity import RetryCallState

from postal_sync.common.errors import FatalStoreUnavailable, StoreError, UnprocessedItems, WriteFailed
from postal_sync.common.logging import log_event
from postal_sync.common.models import BatchItemOutcome, ClassifiedRecord, HashEntry
from postal_sync.common.retry import RetryPolicy
from postal_sync.common.time_utils import utc_timestamp_iso
from postal_sync.stores.base import HashStore, RecordStore

Batch = list[ClassifiedRecord]

_module_logger = logging.getLogger(__name__)


@dataclass
class UpsertResult:
    outcomes: list[BatchItemOutcome] = field(default_factory=list)
    deferred: list[ClassifiedRecord] = field(default_factory=list)
    batches: int = 0
    # Set when a store became unavailable and admission stopped.
    fatal_error: str | None = None

    @property
    def applied(self) -> list[BatchItemOutcome]:
        return [outcome for outcome in self.outcomes if outcome.applied]

    @property
    def failed(self) -> list[BatchItemOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.applied]


class BatchUpserter:
    """Write classified records and their digests in bounded batches.

    A batch item is one record write plus one hash write. The hash is only
    written after its record was accepted, and an item is retried as a whole
    until both writes are accepted or the retry policy gives up.
    """

    def __init__(
        self,
        record_store: RecordStore,
        hash_store: HashStore,
        retry_policy: RetryPolicy | None = None,
        *,
        batch_size: int = 25,
        max_workers: int = 4,
        sleep: Callable[[float], None] = time.sleep,
        timestamp: Callable[[], str] = utc_timestamp_iso,
        logger: logging.Logger | None = None,
    ) -> None:
        self.record_store = record_store
        self.hash_store = hash_store
        self.retry_policy = retry_policy or RetryPolicy()
        self.batch_size = max(1, min(batch_size, record_store.max_batch_size, hash_store.max_batch_size))
        self.max_workers = max(1, max_workers)
        self.sleep = sleep
        self.timestamp = timestamp
        self.logger = logger or _module_logger
        self._halted = threading.Event()

    def make_batches(self, items: Iterable[ClassifiedRecord]) -> list[Batch]:
        # Last occurrence wins so a code never lands in two batches.
        unique = {item.code: item for item in items}
        ordered = list(unique.values())
        return [ordered[i : i + self.batch_size] for i in range(0, len(ordered), self.batch_size)]

    def _log_retry(self, state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        log_event(
            self.logger,
            "batch write retry",
            level=logging.WARNING,
            stage="upsert",
            event="WRITE_RETRY",
            status="retry",
            attempt=state.attempt_number,
            error_code=getattr(exc, "error_code", None),
        )

    def _write_once(self, pending: dict[str, ClassifiedRecord]) -> dict[str, ClassifiedRecord]:
        items = list(pending.values())
        unprocessed_records = set(self.record_store.batch_put([item.record for item in items]))

        now = self.timestamp()
        entries = [
            HashEntry(id=item.code, digest=item.digest, updated_at=now)
            for item in items
            if item.code not in unprocessed_records
        ]
        unprocessed_hashes = set(self.hash_store.batch_put(entries)) if entries else set()

        return {
            code: item
            for code, item in pending.items()
            if code in unprocessed_records or code in unprocessed_hashes
        }

    def write_batch(self, batch: Batch) -> list[BatchItemOutcome]:
        started = time.monotonic()
        pending = {item.code: item for item in batch}
        attempts = 0
        error_code: str | None = None
        try:
            for attempt in self.retry_policy.retrying(sleep=self.sleep, before_sleep=self._log_retry):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    pending = self._write_once(pending)
                    if pending:
                        raise UnprocessedItems(list(pending))
        except FatalStoreUnavailable as exc:
            self._halted.set()
            error_code = exc.error_code
        except StoreError as exc:
            error_code = exc.error_code

        outcomes = [
            BatchItemOutcome(
                code=item.code,
                applied=item.code not in pending,
                attempts=attempts,
                error_code=None if item.code not in pending else (error_code or WriteFailed.error_code),
            )
            for item in batch
        ]
        log_event(
            self.logger,
            "batch written" if not pending else "batch partially failed",
            level=logging.INFO if not pending else logging.WARNING,
            stage="upsert",
            event="BATCH_END",
            status="ok" if not pending else "error",
            attempt=attempts,
            duration_ms=int((time.monotonic() - started) * 1000),
            rows_in=len(batch),
            rows_out=len(batch) - len(pending),
            error_code=error_code if pending else None,
        )
        return outcomes

    def upsert(
        self,
        items: Iterable[ClassifiedRecord],
        *,
        admit: Callable[[], bool] = lambda: True,
    ) -> UpsertResult:
        """Write ``items`` with at most ``max_workers`` batches in flight.

        ``admit`` is asked before every submission; once it says no, the
        batches already running drain and everything else is deferred.
        """
        self._halted.clear()
        result = UpsertResult()
        batches = self.make_batches(items)
        next_index = 0

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="upsert") as pool:
            in_flight: set[Future] = set()
            while True:
                while next_index < len(batches) and len(in_flight) < self.max_workers:
                    if self._halted.is_set() or not admit():
                        for batch in batches[next_index:]:
                            result.deferred.extend(batch)
                        next_index = len(batches)
                        break
                    in_flight.add(pool.submit(self.write_batch, batches[next_index]))
                    next_index += 1
                    result.batches += 1

                if not in_flight:
                    break
                done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    result.outcomes.extend(future.result())

        if self._halted.is_set():
            result.fatal_error = FatalStoreUnavailable.error_code
        return result
