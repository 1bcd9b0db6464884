"""Generic request handling for every media operation.

validate -> acquire inputs -> build argv -> run -> serialize -> release
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, AsyncIterator

from fastapi.responses import JSONResponse, Response, StreamingResponse

from ffmpeg_api.config import Settings
from ffmpeg_api.exceptions import (
    MissingInputError,
    OperationNotImplementedError,
    ProcessingError,
    ValidationError,
)
from ffmpeg_api.services.fetcher import RemoteFetcher
from ffmpeg_api.services.ffmpeg_runner import FFmpegRunner
from ffmpeg_api.services.media_probe import parse_probe_output
from ffmpeg_api.services.operations import JobContext, Operation
from ffmpeg_api.services.temp_storage import TempArtifacts, TempStorage

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._ -]+")
MIN_MULTI_INPUTS = 2


def content_disposition(filename: str, extension: str, disposition: str = "attachment") -> str:
    """Build a Content-Disposition header with a sanitized filename."""
    name = Path(filename).name
    name = _UNSAFE_FILENAME.sub("_", name).strip(" .") or "output"
    if not name.lower().endswith(f".{extension.lower()}"):
        name = f"{name}.{extension}"
    return f'{disposition}; filename="{name}"'


class Dispatcher:
    """Applies an Operation descriptor to a validated request body."""

    def __init__(
        self,
        settings: Settings,
        storage: TempStorage,
        fetcher: RemoteFetcher,
        runner: FFmpegRunner,
    ):
        self.settings = settings
        self.storage = storage
        self.fetcher = fetcher
        self.runner = runner

    def _binary(self, operation: Operation) -> list[str]:
        if operation.binary == "ffprobe":
            return [self.settings.ffprobe_path]
        return [self.settings.ffmpeg_path, "-hide_banner", "-y"]

    def validate(self, operation: Operation, body: Any) -> None:
        """Reject requests before any fetch happens.

        Raises:
            OperationNotImplementedError: descriptor has no argv builder
            MissingInputError / ValidationError: input fields absent or ambiguous
        """
        if not operation.implemented:
            raise OperationNotImplementedError(operation.name)

        if operation.inputs == "multi":
            urls = [u for u in body.urls if u and u.strip()]
            if len(urls) != len(body.urls):
                raise ValidationError("'urls' must not contain empty entries")
            if len(urls) < MIN_MULTI_INPUTS:
                raise ValidationError(
                    f"Provide at least {MIN_MULTI_INPUTS} URLs in 'urls' for {operation.name}"
                )
            return

        has_url = bool(body.url and body.url.strip())
        has_inline = bool(body.base64 and body.base64.strip())
        if not has_url and not has_inline:
            raise MissingInputError()
        if has_url and has_inline:
            raise ValidationError("Provide only one of 'url' or 'base64'")

    async def _acquire_inputs(
        self, operation: Operation, body: Any, artifacts: TempArtifacts
    ) -> list[Path]:
        if operation.inputs == "multi":
            # Sequential on purpose: one download at a time per request
            return [
                await self.fetcher.fetch_to_file(url, artifacts, prefix="part", extension="media")
                for url in body.urls
            ]

        if body.url:
            inputs = [await self.fetcher.fetch_to_file(body.url, artifacts, prefix="input", extension="media")]
        else:
            inputs = [
                await self.fetcher.decode_inline_to_file(body.base64, artifacts, prefix="input", extension="media")
            ]

        if operation.inputs == "single+overlay":
            inputs.append(
                await self.fetcher.fetch_to_file(body.watermark_url, artifacts, prefix="overlay", extension="img")
            )
        return inputs

    def _headers(self, operation: Operation, body: Any, extension: str) -> dict[str, str]:
        filename = getattr(body, "filename", None)
        if not filename and operation.default_filename is not None:
            filename = operation.default_filename(body)
        if not filename:
            return {}
        disposition = "attachment" if operation.disposition == "attachment" or body.filename else "inline"
        return {"Content-Disposition": content_disposition(filename, extension, disposition)}

    async def execute(
        self,
        operation: Operation,
        body: Any,
        *,
        verbose: bool = True,
        request_id: str = "-",
    ) -> Response:
        """Run one operation in file mode (or streaming mode when requested)."""
        self.validate(operation, body)

        if operation.streamable and getattr(body, "stream", False):
            return await self.stream(operation, body, verbose=verbose, request_id=request_id)

        async with self.storage.scope(request_id) as artifacts:
            inputs = await self._acquire_inputs(operation, body, artifacts)
            extension = operation.output_extension(body)

            output: Path | None = None
            if operation.output_kind == "file":
                output = artifacts.allocate(operation.name.replace("-", "_"), extension)

            ctx = JobContext(
                body=body,
                inputs=[str(p) for p in inputs],
                output=str(output) if output else "",
                artifacts=artifacts,
            )
            if operation.prepare is not None:
                operation.prepare(ctx)
            argv = [*self._binary(operation), *operation.build_argv(ctx)]

            result = await self.runner.run(
                argv,
                verbose=verbose,
                capture_stdout=operation.output_kind == "json",
            )
            for path in inputs:
                artifacts.mark_consumed(path)

            if operation.output_kind == "json":
                return JSONResponse(content=parse_probe_output(result.stdout))

            if output is None or not output.exists() or output.stat().st_size == 0:
                raise ProcessingError(result.exit_code, "FFmpeg produced no output")
            data = await asyncio.to_thread(output.read_bytes)
            artifacts.mark_consumed(output)

        logger.info(f"[{request_id}] {operation.name} -> {len(data)} bytes")
        return Response(
            content=data,
            media_type=operation.content_type(body),
            headers=self._headers(operation, body, extension),
        )

    async def stream(
        self,
        operation: Operation,
        body: Any,
        *,
        verbose: bool = True,
        request_id: str = "-",
    ) -> StreamingResponse:
        """Pipe the source through ffmpeg straight into the response.

        The first output chunk is read before the response starts, so
        failures that happen up front (unreachable source, bad arguments)
        still produce a 500 instead of a truncated 200.
        """
        extension = operation.output_extension(body)
        ctx = JobContext(body=body, inputs=["pipe:0"], output="pipe:1", streaming=True)
        argv = [*self._binary(operation), *operation.build_argv(ctx)]

        if body.url:
            source = await self.fetcher.open_stream(body.url)
        else:
            source = self.fetcher.inline_stream(body.base64)

        chunks = self.runner.stream(argv, source, verbose=verbose)
        try:
            first = await chunks.__anext__()
        except StopAsyncIteration:
            await source.aclose()
            raise ProcessingError(0, "FFmpeg produced no output")
        except BaseException:
            # The runner may fail before it ever reads the source (busy, binary missing)
            await source.aclose()
            raise

        async def body_iter() -> AsyncIterator[bytes]:
            sent = len(first)
            try:
                yield first
                async for chunk in chunks:
                    sent += len(chunk)
                    yield chunk
            except ProcessingError as e:
                logger.warning(f"[{request_id}] {operation.name} stream aborted after {sent} bytes: {e}")
                raise
            finally:
                await chunks.aclose()
            logger.info(f"[{request_id}] {operation.name} streamed {sent} bytes")

        return StreamingResponse(
            body_iter(),
            media_type=operation.content_type(body),
            headers=self._headers(operation, body, extension),
        )
