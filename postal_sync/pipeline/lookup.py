"""Read path: single postal code lookup."""

from __future__ import annotations

from typing import Any

from postal_sync.common.models import PostalCodeRecord
from postal_sync.common.postal_code import clean_postal_code, normalise_postal_code
from postal_sync.stores.base import RecordStore

RESPONSE_FIELDS = ("prefecture", "city", "town", "prefecture_kana", "city_kana", "town_kana")


def lookup(record_store: RecordStore, raw_code: str | None) -> PostalCodeRecord | None:
    code = normalise_postal_code(raw_code)
    if code is None:
        return None
    return record_store.get(code)


def lookup_response(record_store: RecordStore, raw_code: str | None) -> dict[str, Any]:
    """Build the ``{"code": ..., "data": [...]}`` payload served to clients.

    ``code`` echoes the normalised input, or its half-width, hyphen-stripped
    form when it is not a valid code; ``data`` is empty when nothing matches.
    """
    code = normalise_postal_code(raw_code)
    record = record_store.get(code) if code is not None else None
    data = [] if record is None else [{name: record.fields.get(name, "") for name in RESPONSE_FIELDS}]
    return {"code": code if code is not None else clean_postal_code(raw_code), "data": data}
