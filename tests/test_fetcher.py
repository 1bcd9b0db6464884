"""
Tests for source acquisition (remote downloads and inline payloads).
"""

import base64

import httpx
import pytest

from ffmpeg_api.exceptions import FetchError, ValidationError
from ffmpeg_api.services.fetcher import RemoteFetcher, decode_inline, strip_data_uri
from ffmpeg_api.services.temp_storage import TempStorage

BODY = b"0123456789" * 10


def _handler(request: httpx.Request) -> httpx.Response:
    if request.url.host == "down.test":
        raise httpx.ConnectError("connection refused", request=request)
    if request.url.path == "/missing":
        return httpx.Response(404)
    return httpx.Response(200, content=BODY)


@pytest.fixture
def storage(tmp_path) -> TempStorage:
    return TempStorage(tmp_path / "scratch")


def _fetcher(max_download_bytes: int = 1024) -> RemoteFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(_handler))
    return RemoteFetcher(client, max_download_bytes=max_download_bytes, chunk_size=16)


class TestDecodeInline:
    def test_plain_base64(self):
        assert decode_inline(base64.b64encode(b"media").decode()) == b"media"

    def test_data_uri_prefix_removed(self):
        payload = "data:audio/mpeg;base64," + base64.b64encode(b"media").decode()
        assert strip_data_uri(payload) == base64.b64encode(b"media").decode()
        assert decode_inline(payload) == b"media"

    def test_wrapped_lines_tolerated(self):
        encoded = base64.b64encode(b"x" * 120).decode()
        wrapped = "\n".join(encoded[i:i + 76] for i in range(0, len(encoded), 76))
        assert decode_inline(wrapped) == b"x" * 120

    def test_invalid_payload(self):
        with pytest.raises(ValidationError, match="Invalid base64"):
            decode_inline("@@@@")

    def test_empty_payload(self):
        with pytest.raises(ValidationError, match="empty"):
            decode_inline("data:video/mp4;base64,")


class TestFetchToFile:
    @pytest.mark.asyncio
    async def test_download_written_to_scope(self, storage):
        async with storage.scope("req") as artifacts:
            path = await _fetcher().fetch_to_file("http://media.test/a.mp4", artifacts)

            assert path.read_bytes() == BODY
            assert artifacts.paths == [path]
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_http_error_status(self, storage):
        async with storage.scope("req") as artifacts:
            with pytest.raises(FetchError, match="HTTP 404"):
                await _fetcher().fetch_to_file("http://media.test/missing", artifacts)

    @pytest.mark.asyncio
    async def test_connection_error(self, storage):
        async with storage.scope("req") as artifacts:
            with pytest.raises(FetchError) as exc_info:
                await _fetcher().fetch_to_file("http://down.test/a.mp4", artifacts)

        assert exc_info.value.url == "http://down.test/a.mp4"
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_oversize_download_aborted(self, storage):
        async with storage.scope("req") as artifacts:
            with pytest.raises(FetchError, match="limit"):
                await _fetcher(max_download_bytes=50).fetch_to_file("http://media.test/a.mp4", artifacts)

        assert list(storage.base_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_inline_to_file(self, storage):
        async with storage.scope("req") as artifacts:
            path = await _fetcher().decode_inline_to_file(base64.b64encode(b"abc").decode(), artifacts)
            assert path.read_bytes() == b"abc"

    @pytest.mark.asyncio
    async def test_inline_over_limit(self, storage):
        payload = base64.b64encode(b"x" * 100).decode()
        async with storage.scope("req") as artifacts:
            with pytest.raises(ValidationError, match="too large"):
                await _fetcher(max_download_bytes=10).decode_inline_to_file(payload, artifacts)


class TestOpenStream:
    @pytest.mark.asyncio
    async def test_streams_body(self):
        body = await _fetcher().open_stream("http://media.test/a.mp4")

        assert b"".join([chunk async for chunk in body]) == BODY

    @pytest.mark.asyncio
    async def test_close_before_iteration_releases_response(self):
        source = await _fetcher().open_stream("http://media.test/a.mp4")
        assert not source.closed

        await source.aclose()

        assert source.closed

    @pytest.mark.asyncio
    async def test_exhausted_body_closes_response(self):
        source = await _fetcher().open_stream("http://media.test/a.mp4")

        async for _ in source:
            pass

        assert source.closed

    @pytest.mark.asyncio
    async def test_status_checked_up_front(self):
        with pytest.raises(FetchError, match="HTTP 404"):
            await _fetcher().open_stream("http://media.test/missing")

    @pytest.mark.asyncio
    async def test_unreachable_up_front(self):
        with pytest.raises(FetchError):
            await _fetcher().open_stream("http://down.test/a.mp4")

    @pytest.mark.asyncio
    async def test_inline_stream(self):
        body = RemoteFetcher.inline_stream(base64.b64encode(b"abc").decode())

        assert [chunk async for chunk in body] == [b"abc"]
