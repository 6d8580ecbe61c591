"""Japanese postal code normalisation and validation."""

from __future__ import annotations

import re

POSTAL_CODE_RE = re.compile(r"[0-9]{7}", re.ASCII)

_HYPHENS_RE = re.compile(r"[-‐-―−ー－]")
_WHITESPACE_RE = re.compile(r"\s+")


def _to_half_width(ch: str) -> str:
    code = ord(ch)
    if 0xFF01 <= code <= 0xFF5E:
        return chr(code - 0xFF01 + 0x21)
    if 0x2002 <= code <= 0x200B or code in (0x3000, 0xFEFF):
        return " "
    return ch


def is_valid_postal_code(value: str) -> bool:
    return POSTAL_CODE_RE.fullmatch(value) is not None


def clean_postal_code(raw: str | None) -> str:
    """Half-width ``raw`` with the 〒 mark, hyphens and whitespace removed.

    The result is not validated.
    """
    if raw is None:
        return ""
    cleaned = "".join(_to_half_width(ch) for ch in str(raw))
    cleaned = cleaned.strip()
    if cleaned.startswith("〒"):
        cleaned = cleaned[1:]
    cleaned = _HYPHENS_RE.sub("", cleaned)
    return _WHITESPACE_RE.sub("", cleaned)


def normalise_postal_code(raw: str | None) -> str | None:
    """Return the 7-digit key for ``raw`` or None when it cannot be one.

    Accepts full-width digits and the common ``100-0001`` display form.
    Only ASCII digits survive; other Unicode digits are rejected.
    """
    if raw is None:
        return None
    cleaned = clean_postal_code(raw)
    if not is_valid_postal_code(cleaned):
        return None
    return cleaned
