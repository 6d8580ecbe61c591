"""Data models shared by the update pipeline and the lookup path."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping


@dataclass(frozen=True)
class PostalCodeRecord:
    """Canonical postal-code record.

    ``fields`` is frozen in attribute-name order so two records built from
    differently ordered input serialise identically.
    """

    code: str
    fields: Mapping[str, str]

    def __post_init__(self) -> None:
        ordered = {key: self.fields[key] for key in sorted(self.fields)}
        object.__setattr__(self, "fields", MappingProxyType(ordered))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PostalCodeRecord):
            return NotImplemented
        return self.code == other.code and dict(self.fields) == dict(other.fields)

    def __hash__(self) -> int:
        return hash((self.code, tuple(self.fields.items())))

    def with_fields(self, **updates: str) -> "PostalCodeRecord":
        merged = dict(self.fields)
        merged.update(updates)
        return PostalCodeRecord(code=self.code, fields=merged)

    def to_item(self) -> dict[str, str]:
        return {"postal_code": self.code, **self.fields}


@dataclass(frozen=True)
class HashEntry:
    id: str
    digest: str
    updated_at: str

    def to_item(self) -> dict[str, str]:
        return {"id": self.id, "hash": self.digest, "updated_at": self.updated_at}


class Classification(str, enum.Enum):
    NEW = "new"
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    LOOKUP_FAILED = "lookup_failed"


@dataclass(frozen=True)
class ClassifiedRecord:
    record: PostalCodeRecord
    digest: str
    classification: Classification

    @property
    def code(self) -> str:
        return self.record.code


@dataclass(frozen=True)
class BatchItemOutcome:
    code: str
    applied: bool
    attempts: int
    error_code: str | None = None


class RunState(str, enum.Enum):
    IDLE = "idle"
    INGESTING = "ingesting"
    DETECTING = "detecting"
    UPSERTING = "upserting"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"


@dataclass
class RunSummary:
    run_id: str
    state: RunState = RunState.IDLE
    new: int = 0
    changed: int = 0
    unchanged: int = 0
    malformed: int = 0
    lookup_failed: int = 0
    write_failed: int = 0
    deferred: int = 0
    applied: int = 0
    batches: int = 0
    snapshot_unchanged: bool = False
    elapsed_seconds: float = 0.0
    error_code: str | None = None
    failure_samples: dict[str, list[str]] = field(default_factory=dict)

    @property
    def failed(self) -> int:
        return self.lookup_failed + self.write_failed + self.deferred

    def add_sample(self, kind: str, value: str, limit: int) -> None:
        samples = self.failure_samples.setdefault(kind, [])
        if len(samples) < limit:
            samples.append(value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.state.value,
            "counts": {
                "New": self.new,
                "Changed": self.changed,
                "Unchanged": self.unchanged,
                "Failed": self.failed,
            },
            "detail": {
                "malformed": self.malformed,
                "lookup_failed": self.lookup_failed,
                "write_failed": self.write_failed,
                "deferred": self.deferred,
                "applied": self.applied,
                "batches": self.batches,
            },
            "snapshot_unchanged": self.snapshot_unchanged,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "error_code": self.error_code,
            "failure_samples": {key: list(values) for key, values in sorted(self.failure_samples.items())},
        }
