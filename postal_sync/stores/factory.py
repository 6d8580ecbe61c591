"""Store construction from settings."""

from __future__ import annotations

from postal_sync.common.config import Settings
from postal_sync.common.errors import ConfigError
from postal_sync.stores.base import HashStore, RecordStore
from postal_sync.stores.memory import InMemoryHashStore, InMemoryRecordStore

BACKENDS = ("dynamodb", "memory")


def _check_backend(backend: str) -> None:
    if backend not in BACKENDS:
        raise ConfigError(f"Unknown store backend: {backend}")


def build_record_store(settings: Settings, backend: str = "dynamodb", *, client=None) -> RecordStore:
    _check_backend(backend)
    if backend == "memory":
        return InMemoryRecordStore(max_batch_size=settings.batch_size)

    from postal_sync.stores.dynamodb import DynamoRecordStore

    if not settings.record_table_name:
        raise ConfigError("RECORD_TABLE_NAME must be set")
    return DynamoRecordStore(settings.record_table_name, client=client, region=settings.aws_region)


def build_stores(settings: Settings, backend: str = "dynamodb", *, client=None) -> tuple[RecordStore, HashStore]:
    _check_backend(backend)
    if backend == "memory":
        return (
            InMemoryRecordStore(max_batch_size=settings.batch_size),
            InMemoryHashStore(max_batch_size=settings.batch_size),
        )

    from postal_sync.stores.dynamodb import DynamoHashStore, DynamoRecordStore, build_client

    record_table, hash_table = settings.require_tables()
    client = client if client is not None else build_client(settings.aws_region)
    return (
        DynamoRecordStore(record_table, client=client),
        DynamoHashStore(hash_table, client=client),
    )
