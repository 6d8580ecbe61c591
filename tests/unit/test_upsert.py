import pytest

from postal_sync.common.errors import FatalStoreUnavailable, StoreError, StoreThrottled, WriteFailed
from postal_sync.common.models import Classification, ClassifiedRecord, PostalCodeRecord
from postal_sync.common.retry import RetryPolicy
from postal_sync.pipeline.hashing import record_digest
from postal_sync.pipeline.upsert import BatchUpserter
from postal_sync.stores.memory import InMemoryHashStore, InMemoryRecordStore

NO_WAIT = RetryPolicy(max_attempts=3, base_delay=0, max_delay=0, jitter=0)


def item(code: str, town: str = "町") -> ClassifiedRecord:
    rec = PostalCodeRecord(code=code, fields={"prefecture": "東京都", "city": "千代田区", "town": town})
    return ClassifiedRecord(record=rec, digest=record_digest(rec), classification=Classification.NEW)


def items(n: int) -> list[ClassifiedRecord]:
    return [item(f"{1000000 + i:07d}") for i in range(n)]


class ThrottlingRecordStore(InMemoryRecordStore):
    def __init__(self, failures: int, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures
        self.calls = 0

    def batch_put(self, records):
        self.calls += 1
        if self.calls <= self.failures:
            raise StoreThrottled("ProvisionedThroughputExceededException")
        return super().batch_put(records)


class StickyHashStore(InMemoryHashStore):
    """Leaves the given ids unprocessed for the first ``rounds`` writes."""

    def __init__(self, stuck, rounds, **kwargs):
        super().__init__(**kwargs)
        self.stuck = set(stuck)
        self.rounds = rounds

    def batch_put(self, entries):
        if self.rounds > 0:
            self.rounds -= 1
            accepted = [entry for entry in entries if entry.id not in self.stuck]
            super().batch_put(accepted)
            return [entry.id for entry in entries if entry.id in self.stuck]
        return super().batch_put(entries)


@pytest.mark.parametrize("count", [0, 1, 24, 25, 26, 51, 100])
def test_no_batch_exceeds_store_limit(count):
    records = InMemoryRecordStore()
    hashes = InMemoryHashStore()
    upserter = BatchUpserter(records, hashes, NO_WAIT, batch_size=25, max_workers=3)

    result = upserter.upsert(items(count))

    assert all(len(request) <= 25 for request in records.write_requests)
    assert all(len(request) <= 25 for request in hashes.write_requests)
    assert len(result.applied) == count
    assert result.batches == -(-count // 25)


def test_batch_size_is_capped_by_store_limit():
    upserter = BatchUpserter(InMemoryRecordStore(max_batch_size=10), InMemoryHashStore(), batch_size=25)
    assert upserter.batch_size == 10


def test_make_batches_keeps_one_item_per_code():
    upserter = BatchUpserter(InMemoryRecordStore(), InMemoryHashStore(), batch_size=2)
    batches = upserter.make_batches([item("1000001"), item("1000002"), item("1000001", town="新")])

    codes = [entry.code for batch in batches for entry in batch]
    assert sorted(codes) == ["1000001", "1000002"]
    assert batches[0][0].record.fields["town"] == "新"


def test_throttled_twice_then_applied_with_backoff():
    sleeps = []
    records = ThrottlingRecordStore(failures=2)
    hashes = InMemoryHashStore()
    policy = RetryPolicy(max_attempts=5, base_delay=0.1, max_delay=5, jitter=0)
    upserter = BatchUpserter(records, hashes, policy, max_workers=1, sleep=sleeps.append)

    result = upserter.upsert([item("1000002")])

    assert [outcome.applied for outcome in result.outcomes] == [True]
    assert result.outcomes[0].attempts == 3
    assert len(sleeps) == 2
    assert 0 < sleeps[0] < sleeps[1]
    assert "1000002" in hashes.entries


def test_item_retried_as_unit_when_hash_write_unprocessed():
    records = InMemoryRecordStore()
    hashes = StickyHashStore({"1000001"}, rounds=1)
    upserter = BatchUpserter(records, hashes, NO_WAIT, max_workers=1, sleep=lambda _s: None)

    result = upserter.upsert([item("1000001"), item("1000002")])

    assert all(outcome.applied for outcome in result.outcomes)
    # the record write is repeated together with its hash write
    assert records.write_requests == [["1000001", "1000002"], ["1000001"]]
    assert hashes.entries["1000001"].digest == item("1000001").digest


def test_exhausted_retries_report_write_failed_without_hash():
    records = ThrottlingRecordStore(failures=10)
    hashes = InMemoryHashStore()
    upserter = BatchUpserter(records, hashes, NO_WAIT, max_workers=1, sleep=lambda _s: None)

    result = upserter.upsert([item("1000001")])

    assert [outcome.applied for outcome in result.outcomes] == [False]
    assert result.outcomes[0].error_code == "STORE_THROTTLED"
    assert result.outcomes[0].attempts == NO_WAIT.max_attempts
    assert hashes.entries == {}


def test_non_transient_error_is_not_retried():
    records = InMemoryRecordStore()
    calls = []

    def rejected(batch):
        calls.append(batch)
        raise StoreError("ValidationException")

    records.batch_put = rejected
    upserter = BatchUpserter(records, InMemoryHashStore(), NO_WAIT, max_workers=1)

    result = upserter.upsert([item("1000001")])

    assert len(calls) == 1
    assert result.failed[0].error_code == "STORE_ERROR"


def test_admission_refusal_defers_remaining_batches():
    records = InMemoryRecordStore()
    answers = iter([True, True, False])
    upserter = BatchUpserter(records, InMemoryHashStore(), NO_WAIT, batch_size=2, max_workers=1)

    result = upserter.upsert(items(7), admit=lambda: next(answers))

    assert result.batches == 2
    assert len(result.applied) == 4
    assert len(result.deferred) == 3
    assert len(records.items) == 4


def test_fatal_store_error_stops_admission():
    records = InMemoryRecordStore()

    def gone(_batch):
        raise FatalStoreUnavailable("ResourceNotFoundException")

    records.batch_put = gone
    upserter = BatchUpserter(records, InMemoryHashStore(), NO_WAIT, batch_size=1, max_workers=1)

    result = upserter.upsert(items(3))

    assert result.batches == 1
    assert result.failed[0].error_code == "FATAL_STORE_UNAVAILABLE"
    assert len(result.deferred) == 2


def test_fatal_store_error_is_reported_on_result():
    records = InMemoryRecordStore()

    def gone(_batch):
        raise FatalStoreUnavailable("ResourceNotFoundException")

    records.batch_put = gone
    upserter = BatchUpserter(records, InMemoryHashStore(), NO_WAIT, batch_size=1, max_workers=1)

    assert upserter.upsert(items(2)).fatal_error == "FATAL_STORE_UNAVAILABLE"
    assert BatchUpserter(InMemoryRecordStore(), InMemoryHashStore(), NO_WAIT).upsert(items(2)).fatal_error is None


def test_store_error_without_code_is_reported_as_write_failed():
    class UncodedStoreError(StoreError):
        error_code = None

    records = InMemoryRecordStore()

    def rejected(_batch):
        raise UncodedStoreError("rejected")

    records.batch_put = rejected
    upserter = BatchUpserter(records, InMemoryHashStore(), NO_WAIT)

    result = upserter.upsert(items(1))

    assert result.failed[0].error_code == WriteFailed.error_code == "WRITE_FAILED"
