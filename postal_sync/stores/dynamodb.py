"""DynamoDB-backed record and hash stores (boto3 low-level client)."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterable, Iterator

from botocore.exceptions import BotoCoreError, ClientError, ConnectTimeoutError, EndpointConnectionError, NoCredentialsError

from postal_sync.common.constants import ADDRESS_FIELDS, DYNAMODB_MAX_BATCH_GET, HASH_KEY_ATTRIBUTE, RECORD_KEY_ATTRIBUTE
from postal_sync.common.errors import FatalStoreUnavailable, StoreError, StoreThrottled
from postal_sync.common.models import HashEntry, PostalCodeRecord
from postal_sync.stores.base import HashStore, RecordStore

logger = logging.getLogger(__name__)

THROTTLING_ERROR_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
    "InternalServerError",
    "ServiceUnavailable",
}
FATAL_ERROR_CODES = {
    "ResourceNotFoundException",
    "AccessDeniedException",
    "UnrecognizedClientException",
}


def build_client(region: str | None = None):
    import boto3

    return boto3.client("dynamodb", region_name=region)


@contextmanager
def _translate_errors(table_name: str) -> Iterator[None]:
    try:
        yield
    except ClientError as exc:
        code = exc.response.get("Error", {}).get("Code", "")
        if code in THROTTLING_ERROR_CODES:
            raise StoreThrottled(f"{table_name}: {code}") from exc
        if code in FATAL_ERROR_CODES:
            raise FatalStoreUnavailable(f"{table_name}: {code}") from exc
        raise StoreError(f"{table_name}: {code or exc}") from exc
    except (EndpointConnectionError, ConnectTimeoutError, NoCredentialsError) as exc:
        raise FatalStoreUnavailable(f"{table_name}: {exc}") from exc
    except BotoCoreError as exc:
        raise StoreThrottled(f"{table_name}: {exc}") from exc


def _string_item(values: dict[str, str]) -> dict[str, dict[str, str]]:
    return {key: {"S": value} for key, value in values.items()}


def _plain_item(item: dict[str, dict[str, Any]]) -> dict[str, str]:
    return {key: value.get("S", "") for key, value in item.items()}


class _DynamoTable:
    def __init__(self, table_name: str, *, client=None, region: str | None = None) -> None:
        self.table_name = table_name
        self.client = client if client is not None else build_client(region)

    def check_available(self) -> None:
        with _translate_errors(self.table_name):
            response = self.client.describe_table(TableName=self.table_name)
        status = response.get("Table", {}).get("TableStatus")
        if status not in (None, "ACTIVE", "UPDATING"):
            raise FatalStoreUnavailable(f"{self.table_name}: table status {status}")

    def _batch_write(self, items: list[dict[str, str]], key_attribute: str) -> list[str]:
        if not items:
            return []
        request = [{"PutRequest": {"Item": _string_item(item)}} for item in items]
        with _translate_errors(self.table_name):
            response = self.client.batch_write_item(RequestItems={self.table_name: request})
        unprocessed = response.get("UnprocessedItems", {}).get(self.table_name, [])
        return [entry["PutRequest"]["Item"][key_attribute]["S"] for entry in unprocessed]


class DynamoRecordStore(_DynamoTable, RecordStore):
    def get(self, code: str) -> PostalCodeRecord | None:
        with _translate_errors(self.table_name):
            response = self.client.get_item(
                TableName=self.table_name,
                Key={RECORD_KEY_ATTRIBUTE: {"S": code}},
            )
        item = response.get("Item")
        if not item:
            return None
        values = _plain_item(item)
        values.pop(RECORD_KEY_ATTRIBUTE, None)
        fields = {name: values.get(name, "") for name in ADDRESS_FIELDS}
        return PostalCodeRecord(code=code, fields=fields)

    def batch_put(self, records: list[PostalCodeRecord]) -> list[str]:
        return self._batch_write([record.to_item() for record in records], RECORD_KEY_ATTRIBUTE)


class DynamoHashStore(_DynamoTable, HashStore):
    def batch_get(self, codes: Iterable[str]) -> tuple[dict[str, HashEntry], list[str]]:
        codes = list(codes)
        if len(codes) > DYNAMODB_MAX_BATCH_GET:
            raise StoreError(f"batch_get of {len(codes)} keys exceeds {DYNAMODB_MAX_BATCH_GET}")
        if not codes:
            return {}, []

        request = {
            self.table_name: {
                "Keys": [{HASH_KEY_ATTRIBUTE: {"S": code}} for code in codes],
                "ConsistentRead": True,
            }
        }
        with _translate_errors(self.table_name):
            response = self.client.batch_get_item(RequestItems=request)

        found: dict[str, HashEntry] = {}
        for item in response.get("Responses", {}).get(self.table_name, []):
            values = _plain_item(item)
            found[values[HASH_KEY_ATTRIBUTE]] = HashEntry(
                id=values[HASH_KEY_ATTRIBUTE],
                digest=values.get("hash", ""),
                updated_at=values.get("updated_at", ""),
            )
        pending = response.get("UnprocessedKeys", {}).get(self.table_name, {}).get("Keys", [])
        unprocessed = [key[HASH_KEY_ATTRIBUTE]["S"] for key in pending]
        if unprocessed:
            logger.debug("batch_get left %d keys unprocessed on %s", len(unprocessed), self.table_name)
        return found, unprocessed

    def batch_put(self, entries: list[HashEntry]) -> list[str]:
        return self._batch_write([entry.to_item() for entry in entries], HASH_KEY_ATTRIBUTE)
