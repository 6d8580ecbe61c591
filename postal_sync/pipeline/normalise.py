"""Normalise raw KEN_ALL entries into canonical postal-code records."""

from __future__ import annotations

import re
from collections import defaultdict
from typing import Any, Iterable, Iterator, Mapping, Sequence

from postal_sync.common.constants import ADDRESS_FIELDS, FIELD_PAIRS, KEN_ALL_MIN_COLUMNS, REQUIRED_FIELDS
from postal_sync.common.errors import MalformedRecord
from postal_sync.common.models import PostalCodeRecord
from postal_sync.common.postal_code import normalise_postal_code

# KEN_ALL column positions.
_KEN_ALL_COLUMNS = {
    "code": 2,
    "prefecture_kana": 3,
    "city_kana": 4,
    "town_kana": 5,
    "prefecture": 6,
    "city": 7,
    "town": 8,
}

_ZENKAKU_PAREN_RE = re.compile(r"（.*?）")
_HANKAKU_PAREN_RE = re.compile(r"\(.*?\)")

_TOWN_NOT_LISTED = "以下に掲載がない場合"
_TOWN_ADDRESS_FOLLOWS = "の次に番地が来る場合"
_TOWN_WHOLE_AREA = "一円"


def _clean_value(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _from_row(raw: Sequence[Any]) -> dict[str, str]:
    if len(raw) < KEN_ALL_MIN_COLUMNS:
        raise MalformedRecord(f"Expected at least {KEN_ALL_MIN_COLUMNS} columns, got {len(raw)}")
    return {name: _clean_value(raw[idx]) for name, idx in _KEN_ALL_COLUMNS.items()}


def _from_mapping(raw: Mapping[str, Any]) -> dict[str, str]:
    values = {name: _clean_value(raw.get(name)) for name in ADDRESS_FIELDS}
    values["code"] = _clean_value(raw.get("code", raw.get("postal_code")))
    return values


def normalize_entry(raw: Mapping[str, Any] | Sequence[Any]) -> PostalCodeRecord:
    """Parse one raw source entry into a :class:`PostalCodeRecord`.

    ``raw`` is either a KEN_ALL CSV row or a mapping of attribute names (plus
    ``code`` or ``postal_code``). Raises :class:`MalformedRecord` when the key
    is not a 7-digit postal code or a required attribute is blank.
    """
    if isinstance(raw, Mapping):
        values = _from_mapping(raw)
    elif isinstance(raw, Sequence) and not isinstance(raw, (str, bytes)):
        values = _from_row(raw)
    else:
        raise MalformedRecord(f"Unsupported entry type: {type(raw).__name__}")

    code = normalise_postal_code(values.pop("code"))
    if code is None:
        raise MalformedRecord("Postal code is missing or not 7 digits")

    missing = [name for name in REQUIRED_FIELDS if not values.get(name)]
    if missing:
        raise MalformedRecord(f"Missing required fields for {code}: {', '.join(missing)}")

    return PostalCodeRecord(code=code, fields=values)


def clean_town_names(records: Iterable[PostalCodeRecord]) -> Iterator[PostalCodeRecord]:
    """Strip KEN_ALL annotations from town names, in source order.

    A town with an unclosed ``（`` spans several rows; the continuation rows up
    to the one carrying ``）`` are dropped.
    """
    continuing = False
    for record in records:
        if continuing:
            if "）" in record.fields["town"]:
                continuing = False
            continue

        town = record.fields["town"]
        town_kana = record.fields["town_kana"]

        if (
            town == _TOWN_NOT_LISTED
            or _TOWN_ADDRESS_FOLLOWS in town
            or (town != _TOWN_WHOLE_AREA and _TOWN_WHOLE_AREA in town)
        ):
            town, town_kana = "", ""

        town = _ZENKAKU_PAREN_RE.sub("", town)
        town_kana = _HANKAKU_PAREN_RE.sub("", town_kana)

        open_idx = town.find("（")
        if open_idx >= 0:
            town = town[:open_idx]
            kana_idx = town_kana.find("(")
            if kana_idx >= 0:
                town_kana = town_kana[:kana_idx]
            continuing = True

        if town != record.fields["town"] or town_kana != record.fields["town_kana"]:
            record = record.with_fields(town=town, town_kana=town_kana)
        yield record


def consolidate(records: Iterable[PostalCodeRecord]) -> list[PostalCodeRecord]:
    """Merge records sharing a code into one record per code, sorted by code.

    Attribute pairs whose values disagree within a code are blanked, since the
    code alone cannot say which one applies.
    """
    grouped: dict[str, list[PostalCodeRecord]] = defaultdict(list)
    for record in records:
        grouped[record.code].append(record)

    merged: list[PostalCodeRecord] = []
    for code in sorted(grouped):
        first, *others = grouped[code]
        values = dict(first.fields)
        for other in others:
            for name, kana in FIELD_PAIRS:
                if values[name] and values[name] != other.fields.get(name, ""):
                    values[name] = ""
                    values[kana] = ""
        merged.append(PostalCodeRecord(code=code, fields=values))
    return merged
