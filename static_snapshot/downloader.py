"""HTTP fetch engine with bounded timeout, bounded retries and a size cap."""

import logging
import time
from typing import Callable, Optional, Tuple

import httpx

from .config import DownloadConfig
from .errors import FetchError

logger = logging.getLogger("static_snapshot")


class Downloader:
    def __init__(self, config: DownloadConfig, transport: Optional[httpx.BaseTransport] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.Client] = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self.config.timeout, connect=10),
                follow_redirects=True,
                headers={"User-Agent": self.config.user_agent},
                transport=self._transport,
            )
        return self._client

    def close(self):
        if self._client and not self._client.is_closed:
            self._client.close()

    def _attempt(self, url: str, timeout: Optional[float] = None) -> Tuple[int, bytes, str]:
        size = 0
        chunks = []
        with self.client.stream("GET", url, timeout=timeout or self.config.timeout) as resp:
            content_length = resp.headers.get("content-length")
            if content_length and content_length.isdigit() and int(content_length) > self.config.max_file_size:
                raise FetchError(url, f"too large: {content_length} bytes")

            for chunk in resp.iter_bytes(chunk_size=65536):
                size += len(chunk)
                if size > self.config.max_file_size:
                    raise FetchError(url, f"exceeded max size during download: {size} bytes")
                chunks.append(chunk)

            content_type = resp.headers.get("content-type", "").split(";", 1)[0].strip().lower()
            return resp.status_code, b"".join(chunks), content_type

    def get(self, url: str, timeout: Optional[float] = None) -> Tuple[int, bytes]:
        """Single GET attempt. Returns (status_code, body); raises httpx.TransportError."""
        status, body, _ = self._attempt(url, timeout)
        return status, body

    def fetch(self, url: str) -> bytes:
        return self.fetch_typed(url)[0]

    def fetch_typed(self, url: str) -> Tuple[bytes, str]:
        """GET with retries, returning (body, content_type).

        Non-2xx, empty bodies and transport errors are retried ``max_retries``
        extra times. Redirect loops, undecodable payloads and malformed URLs
        are not retried. Every failure ends in FetchError.
        """
        attempts = self.config.max_retries + 1
        last_error = ""

        for attempt in range(attempts):
            try:
                status, body, content_type = self._attempt(url)
                if 200 <= status < 300 and body:
                    return body, content_type
                last_error = f"HTTP {status}" if not 200 <= status < 300 else "empty body"
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise FetchError(url, f"{type(e).__name__}: {e}") from e

            if attempt + 1 < attempts:
                wait = self.config.retry_delay * (attempt + 1)
                logger.warning(f"Retry {attempt + 1}/{self.config.max_retries} for {url}: {last_error} (wait {wait}s)")
                self._sleep(wait)

        raise FetchError(url, last_error)
