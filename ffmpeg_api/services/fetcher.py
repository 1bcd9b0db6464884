"""Source media acquisition: remote URLs and inline base64 payloads."""

import base64
import binascii
import logging
import re
from pathlib import Path
from typing import AsyncIterator

import httpx

from ffmpeg_api.exceptions import FetchError, ValidationError
from ffmpeg_api.services.temp_storage import TempArtifacts

logger = logging.getLogger(__name__)

_DATA_URI_RE = re.compile(r"^data:[^,]*?;base64,", re.IGNORECASE)
_CHUNK_SIZE = 1024 * 1024


class ResponseSource:
    """Async iterator over a streamed response body.

    Owns the response: ``aclose`` releases the connection whether or not
    iteration ever started, and exhausting or failing the body closes it too.
    """

    def __init__(self, response: httpx.Response, url: str, chunk_size: int = _CHUNK_SIZE):
        self.response = response
        self.url = url
        self._chunks = response.aiter_bytes(chunk_size)

    @property
    def closed(self) -> bool:
        return self.response.is_closed

    def __aiter__(self) -> "ResponseSource":
        return self

    async def __anext__(self) -> bytes:
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            await self.aclose()
            raise
        except httpx.HTTPError as e:
            await self.aclose()
            raise FetchError(self.url, str(e) or type(e).__name__)

    async def aclose(self) -> None:
        await self._chunks.aclose()
        await self.response.aclose()


def strip_data_uri(payload: str) -> str:
    """Remove a ``data:<mime>;base64,`` prefix if present."""
    return _DATA_URI_RE.sub("", payload.strip(), count=1)


def decode_inline(payload: str) -> bytes:
    """Decode base64 text (optionally a data URI) to bytes."""
    text = strip_data_uri(payload)
    # Tolerate newlines from wrapped encoders
    text = "".join(text.split())
    try:
        data = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Invalid base64 payload: {e}")
    if not data:
        raise ValidationError("Inline payload is empty")
    return data


class RemoteFetcher:
    """Downloads source media into request-owned temp files or streams it."""

    def __init__(self, client: httpx.AsyncClient, max_download_bytes: int, chunk_size: int = _CHUNK_SIZE):
        self.client = client
        self.max_download_bytes = max_download_bytes
        self.chunk_size = chunk_size

    async def fetch_to_file(
        self,
        url: str,
        artifacts: TempArtifacts,
        prefix: str = "input",
        extension: str = "bin",
    ) -> Path:
        """GET ``url`` and write the body to a new temp file.

        Raises:
            FetchError: transport failure, non-2xx status, or oversize body
        """
        dest = artifacts.allocate(prefix, extension)
        written = 0
        try:
            async with self.client.stream("GET", url) as response:
                if not response.is_success:
                    raise FetchError(url, f"HTTP {response.status_code}")
                with dest.open("wb") as f:
                    async for chunk in response.aiter_bytes(self.chunk_size):
                        written += len(chunk)
                        if written > self.max_download_bytes:
                            raise FetchError(
                                url, f"exceeds {self.max_download_bytes // (1024 * 1024)}MB limit"
                            )
                        f.write(chunk)
        except httpx.InvalidURL as e:
            raise ValidationError(f"Invalid URL: {url} ({e})")
        except httpx.HTTPError as e:
            raise FetchError(url, type(e).__name__ if not str(e) else str(e))

        logger.info(f"[{artifacts.owner}] downloaded {url} ({written} bytes)")
        return dest

    async def decode_inline_to_file(
        self,
        payload: str,
        artifacts: TempArtifacts,
        prefix: str = "input",
        extension: str = "bin",
    ) -> Path:
        """Decode an inline base64 payload into a new temp file."""
        data = decode_inline(payload)
        if len(data) > self.max_download_bytes:
            raise ValidationError("Inline payload too large")
        dest = artifacts.allocate(prefix, extension)
        dest.write_bytes(data)
        logger.info(f"[{artifacts.owner}] decoded inline payload ({len(data)} bytes)")
        return dest

    async def open_stream(self, url: str) -> ResponseSource:
        """Start a GET and return a source over the body.

        The status is checked before this coroutine returns, so an
        unreachable or failing source raises FetchError up front.
        """
        try:
            request = self.client.build_request("GET", url)
            response = await self.client.send(request, stream=True)
        except httpx.InvalidURL as e:
            raise ValidationError(f"Invalid URL: {url} ({e})")
        except httpx.HTTPError as e:
            raise FetchError(url, type(e).__name__ if not str(e) else str(e))

        if not response.is_success:
            await response.aclose()
            raise FetchError(url, f"HTTP {response.status_code}")

        return ResponseSource(response, url, self.chunk_size)

    @staticmethod
    def inline_stream(payload: str) -> AsyncIterator[bytes]:
        """Streaming-mode source over an inline payload."""
        data = decode_inline(payload)

        async def body() -> AsyncIterator[bytes]:
            yield data

        return body()
