"""Content digests for change detection."""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Iterable

from postal_sync.common.models import PostalCodeRecord

DIGEST_LENGTH = 43


def _encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii").rstrip("=")


def canonical_bytes(record: PostalCodeRecord) -> bytes:
    payload = {"code": record.code, "fields": dict(record.fields)}
    return json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def record_digest(record: PostalCodeRecord) -> str:
    return _encode(hashlib.sha256(canonical_bytes(record)).digest())


def snapshot_digest(digests_by_code: Iterable[tuple[str, str]]) -> str:
    """Digest of a whole snapshot, given ``(code, digest)`` pairs in any order."""
    hasher = hashlib.sha256()
    for code, digest in sorted(digests_by_code):
        hasher.update(code.encode("ascii"))
        hasher.update(b"\x00")
        hasher.update(digest.encode("ascii"))
        hasher.update(b"\n")
    return _encode(hasher.digest())
