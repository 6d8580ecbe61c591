"""Drive one update run end to end under a time budget."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable, Iterator

from postal_sync.common.config import Settings, load_settings
from postal_sync.common.constants import MAX_FAILURE_SAMPLES, SNAPSHOT_HASH_ID
from postal_sync.common.errors import (
    BudgetExceeded,
    FatalStoreUnavailable,
    MalformedRecord,
    PipelineError,
    StoreError,
    UnprocessedItems,
)
from postal_sync.common.logging import log_event
from postal_sync.common.models import Classification, HashEntry, PostalCodeRecord, RunState, RunSummary
from postal_sync.common.time_utils import generate_run_id, utc_timestamp_iso
from postal_sync.pipeline.detect import ChangeDetector
from postal_sync.pipeline.hashing import record_digest, snapshot_digest
from postal_sync.pipeline.normalise import clean_town_names, consolidate, normalize_entry
from postal_sync.pipeline.upsert import BatchUpserter
from postal_sync.stores.base import HashStore, RecordStore

_module_logger = logging.getLogger(__name__)


class PipelineCoordinator:
    """Run state machine: IDLE, INGESTING, DETECTING, UPSERTING, then a terminal state.

    Stores are injected so the same run logic works against DynamoDB and the
    in-memory stores. ``clock`` and ``sleep`` are injectable for the same
    reason; the time budget is measured on ``clock``.
    """

    def __init__(
        self,
        record_store: RecordStore,
        hash_store: HashStore,
        settings: Settings | None = None,
        *,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        timestamp: Callable[[], str] = utc_timestamp_iso,
    ) -> None:
        self.record_store = record_store
        self.hash_store = hash_store
        self.settings = settings or load_settings({})
        self.logger = logger or _module_logger
        self.clock = clock
        self.sleep = sleep
        self.timestamp = timestamp
        self.state = RunState.IDLE
        self.history: list[RunState] = [RunState.IDLE]
        self._started_at = 0.0
        self._run_id = ""

        self.detector = ChangeDetector(
            hash_store,
            self.settings.retry,
            lookup_batch_size=self.settings.lookup_batch_size,
            sleep=sleep,
            logger=self.logger,
        )
        self.upserter = BatchUpserter(
            record_store,
            hash_store,
            self.settings.retry,
            batch_size=self.settings.batch_size,
            max_workers=self.settings.max_workers,
            sleep=sleep,
            timestamp=timestamp,
            logger=self.logger,
        )

    def _transition(self, state: RunState) -> None:
        self.state = state
        self.history.append(state)
        log_event(
            self.logger,
            f"state {state.value}",
            run_id=self._run_id,
            stage="coordinator",
            event="STATE",
            status="ok",
            state=state.value,
        )

    def elapsed(self) -> float:
        return self.clock() - self._started_at

    def within_budget(self) -> bool:
        deadline = self.settings.time_budget_seconds - self.settings.drain_margin_seconds
        return self.elapsed() < deadline

    def _probe_stores(self) -> None:
        for store in (self.record_store, self.hash_store):
            try:
                for attempt in self.settings.retry.retrying(sleep=self.sleep):
                    with attempt:
                        store.check_available()
            except StoreError as exc:
                raise FatalStoreUnavailable(f"Store probe failed: {exc}") from exc

    def _normalised(self, entries: Iterable[Any], summary: RunSummary) -> Iterator[PostalCodeRecord]:
        for index, raw in enumerate(entries):
            try:
                yield normalize_entry(raw)
            except MalformedRecord as exc:
                summary.malformed += 1
                summary.add_sample("malformed", f"entry {index}: {exc}", MAX_FAILURE_SAMPLES)

    def ingest(self, entries: Iterable[Any], summary: RunSummary) -> list[PostalCodeRecord]:
        records = consolidate(clean_town_names(self._normalised(entries, summary)))
        log_event(
            self.logger,
            "ingest complete",
            run_id=self._run_id,
            stage="ingest",
            event="STAGE_END",
            status="ok",
            rows_out=len(records),
            error_code=MalformedRecord.error_code if summary.malformed else None,
        )
        return records

    def _stored_snapshot(self) -> str | None:
        found, failed, _error_code = self.detector.lookup([SNAPSHOT_HASH_ID])
        if failed or SNAPSHOT_HASH_ID not in found:
            return None
        return found[SNAPSHOT_HASH_ID].digest

    def _put_snapshot(self, digest: str) -> None:
        entry = HashEntry(id=SNAPSHOT_HASH_ID, digest=digest, updated_at=self.timestamp())
        for attempt in self.settings.retry.retrying(sleep=self.sleep):
            with attempt:
                unprocessed = self.hash_store.batch_put([entry])
                if unprocessed:
                    raise UnprocessedItems(unprocessed)

    def _budget_exceeded(self, remaining: int, stage: str) -> None:
        log_event(
            self.logger,
            f"time budget nearly spent, {remaining} records left for the next run",
            level=logging.WARNING,
            run_id=self._run_id,
            stage=stage,
            event="BUDGET_EXCEEDED",
            status="partial",
            rows_out=remaining,
            error_code=BudgetExceeded.error_code,
        )

    def _fail(self, summary: RunSummary, error_code: str, message: str, *, exc_info: bool = False) -> None:
        summary.error_code = error_code
        log_event(
            self.logger,
            message,
            level=logging.ERROR,
            exc_info=exc_info,
            run_id=self._run_id,
            stage=self.state.value,
            event="RUN_FAIL",
            status="error",
            error_code=error_code,
        )
        self._transition(RunState.FAILED)

    def run(self, entries: Iterable[Any], run_id: str | None = None) -> RunSummary:
        self._run_id = run_id or generate_run_id()
        self._started_at = self.clock()
        self.state = RunState.IDLE
        self.history = [RunState.IDLE]
        summary = RunSummary(run_id=self._run_id)

        try:
            self._execute(entries, summary)
        except PipelineError as exc:
            self._fail(summary, exc.error_code, f"run failed: {exc}")
        except Exception as exc:
            self._fail(summary, PipelineError.error_code, f"run failed unexpectedly: {exc!r}", exc_info=True)

        summary.state = self.state
        summary.elapsed_seconds = self.elapsed()
        log_event(
            self.logger,
            "run finished",
            run_id=self._run_id,
            stage="coordinator",
            event="RUN_END",
            status=summary.state.value,
            duration_ms=int(summary.elapsed_seconds * 1000),
            counts=summary.to_dict()["counts"],
        )
        return summary

    def _execute(self, entries: Iterable[Any], summary: RunSummary) -> None:
        self._probe_stores()

        self._transition(RunState.INGESTING)
        records = self.ingest(entries, summary)
        hashed = [(record, record_digest(record)) for record in records]
        snapshot = snapshot_digest((record.code, digest) for record, digest in hashed)

        self._transition(RunState.DETECTING)
        stored_snapshot = self._stored_snapshot() if self.settings.snapshot_shortcut else None
        if stored_snapshot == snapshot:
            summary.snapshot_unchanged = True
            summary.unchanged = len(hashed)
            self._transition(RunState.UPSERTING)
            self._transition(RunState.COMPLETED)
            return

        detection = self.detector.detect(hashed, should_continue=self.within_budget)
        summary.new = len(detection.of(Classification.NEW))
        summary.changed = len(detection.of(Classification.CHANGED))
        summary.unchanged = len(detection.of(Classification.UNCHANGED))
        summary.lookup_failed = len(detection.of(Classification.LOOKUP_FAILED))
        summary.deferred = len(detection.deferred)
        for code in detection.lookup_error_codes:
            summary.add_sample("lookup_failed", code, MAX_FAILURE_SAMPLES)
        if detection.deferred:
            self._budget_exceeded(len(detection.deferred), "detect")

        pending = detection.pending_writes()
        if pending:
            # The stored snapshot no longer describes the table once writes start.
            self._put_snapshot("")

        self._transition(RunState.UPSERTING)
        upserted = self.upserter.upsert(pending, admit=self.within_budget)
        summary.batches = upserted.batches
        summary.applied = len(upserted.applied)
        summary.write_failed = len(upserted.failed)
        summary.deferred += len(upserted.deferred)
        for outcome in upserted.failed:
            summary.add_sample("write_failed", outcome.code, MAX_FAILURE_SAMPLES)
        for item in upserted.deferred:
            summary.add_sample("deferred", item.code, MAX_FAILURE_SAMPLES)
        if upserted.deferred:
            self._budget_exceeded(len(upserted.deferred), "upsert")
        if upserted.fatal_error:
            self._fail(summary, upserted.fatal_error, "store became unavailable while upserting")
            return

        if summary.failed:
            self._transition(RunState.PARTIALLY_FAILED)
            return

        self._transition(RunState.COMPLETED)
        if self.settings.snapshot_shortcut:
            try:
                self._put_snapshot(snapshot)
            except (StoreError, FatalStoreUnavailable) as exc:
                log_event(
                    self.logger,
                    f"snapshot digest not stored: {exc}",
                    level=logging.WARNING,
                    run_id=self._run_id,
                    stage="coordinator",
                    event="SNAPSHOT_SKIPPED",
                    status="warning",
                    error_code=exc.error_code,
                )
