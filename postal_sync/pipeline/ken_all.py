"""KEN_ALL source snapshot: download, unpack and stream rows."""

from __future__ import annotations

import csv
import io
import zipfile
from pathlib import Path
from typing import Iterator

from postal_sync.common.constants import KEN_ALL_ENCODING
from postal_sync.common.errors import SourceError
from postal_sync.common.http import HttpClient


def download_ken_all(
    url: str,
    dest: Path,
    *,
    http_client: HttpClient | None = None,
    chunk_bytes: int = 1 << 20,
) -> Path:
    if http_client is not None:
        http_client.download(url, dest, chunk_bytes=chunk_bytes)
        return dest
    with HttpClient() as client:
        client.download(url, dest, chunk_bytes=chunk_bytes)
    return dest


def _iter_csv(stream: io.TextIOBase) -> Iterator[list[str]]:
    for row in csv.reader(stream):
        if not row:
            continue
        yield row


def iter_ken_all_rows(path: Path, *, encoding: str = KEN_ALL_ENCODING) -> Iterator[list[str]]:
    """Yield raw KEN_ALL rows from a zip archive or a bare CSV file.

    The archive is expected to hold a single CSV member; it is decoded while
    streaming so the whole file never sits in memory as text.
    """
    if not path.exists():
        raise SourceError(f"Source file not found: {path}")

    if zipfile.is_zipfile(path):
        with zipfile.ZipFile(path) as archive:
            members = [info for info in archive.infolist() if not info.is_dir()]
            if not members:
                raise SourceError(f"Source archive is empty: {path}")
            with archive.open(members[0]) as raw:
                with io.TextIOWrapper(raw, encoding=encoding, errors="replace", newline="") as text:
                    yield from _iter_csv(text)
        return

    with path.open("r", encoding=encoding, errors="replace", newline="") as f:
        yield from _iter_csv(f)
