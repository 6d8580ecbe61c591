"""HTTP client with retries and timeouts for fetching source snapshots."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from postal_sync.common.constants import USER_AGENT
from postal_sync.common.errors import SourceError
from postal_sync.common.fs import ensure_dir

RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class TimeoutConfig:
    connect: float = 20.0
    read: float = 120.0


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 4
    multiplier: float = 1.0
    max_wait: float = 30.0


class HttpRequestError(SourceError):
    error_code = "HTTP_ERROR"


class RetryableHttpError(HttpRequestError):
    pass


class HttpClient:
    def __init__(
        self,
        *,
        timeout: TimeoutConfig | None = None,
        retry: RetryConfig | None = None,
    ) -> None:
        self.timeout = timeout or TimeoutConfig()
        self.retry = retry or RetryConfig()
        self.session = requests.Session()

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _raise_for_status_or_retry(self, response: requests.Response) -> None:
        status = response.status_code
        if status in RETRYABLE_STATUS_CODES:
            raise RetryableHttpError(f"Retryable HTTP status: {status}")
        if status >= 400:
            raise HttpRequestError(f"HTTP status: {status}")

    def _download(self, url: str, dest: Path, chunk_bytes: int) -> int:
        ensure_dir(dest.parent)
        tmp_path = dest.with_name(f".{dest.name}.part")
        try:
            response = self.session.request(
                method="GET",
                url=url,
                headers={"User-Agent": USER_AGENT},
                timeout=(self.timeout.connect, self.timeout.read),
                stream=True,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise RetryableHttpError(f"Connection failed for {url}: {exc}") from exc

        try:
            self._raise_for_status_or_retry(response)
            written = 0
            with tmp_path.open("wb") as f:
                for chunk in response.iter_content(chunk_size=chunk_bytes):
                    if chunk:
                        f.write(chunk)
                        written += len(chunk)
        finally:
            response.close()

        if written == 0:
            tmp_path.unlink(missing_ok=True)
            raise HttpRequestError(f"Empty response body from {url}")
        os.replace(tmp_path, dest)
        return written

    def download(self, url: str, dest: Path, *, chunk_bytes: int = 1 << 20) -> int:
        """Stream ``url`` to ``dest`` and return the number of bytes written."""

        @retry(
            stop=stop_after_attempt(self.retry.max_attempts),
            wait=wait_exponential_jitter(
                initial=self.retry.multiplier,
                max=self.retry.max_wait,
                jitter=1.0,
            ),
            retry=retry_if_exception_type(RetryableHttpError),
            reraise=True,
        )
        def _wrapped() -> int:
            return self._download(url, dest, chunk_bytes)

        return _wrapped()
