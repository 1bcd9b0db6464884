"""Subprocess runner for the ffmpeg/ffprobe binaries.

Two modes:
- File mode (``run``): input and output are named files in the argv.
- Streaming mode (``stream``): the argv reads ``pipe:0`` and writes
  ``pipe:1``; source chunks are fed to stdin while stdout is yielded to the
  caller as it is produced.

The exit code is the only success signal. stderr is only ever logged.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, cast

from ffmpeg_api.exceptions import ProcessingError, ProcessingTimeoutError, ServiceBusyError

logger = logging.getLogger(__name__)

# Exit code reported when the binary itself cannot be started
EXIT_NOT_FOUND = 127


@dataclass
class ProcessResult:
    """Outcome of one subprocess invocation."""

    argv: list[str]
    exit_code: int
    stdout: bytes = b""
    elapsed_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class FFmpegRunner:
    """Spawns ffmpeg processes under a process-wide concurrency cap."""

    def __init__(
        self,
        max_concurrent: int,
        timeout_s: float,
        queue_timeout_s: float,
        chunk_size: int = 64 * 1024,
    ):
        self.max_concurrent = max_concurrent
        self.timeout_s = timeout_s
        self.queue_timeout_s = queue_timeout_s
        self.chunk_size = chunk_size
        self._slots = asyncio.Semaphore(max_concurrent)
        self._active = 0

    @property
    def active_jobs(self) -> int:
        return self._active

    @asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=self.queue_timeout_s)
        except asyncio.TimeoutError:
            logger.warning(
                f"No ffmpeg slot free after {self.queue_timeout_s}s "
                f"({self.max_concurrent} jobs running)"
            )
            raise ServiceBusyError()
        self._active += 1
        try:
            yield
        finally:
            self._active -= 1
            self._slots.release()

    async def _spawn(self, argv: list[str], *, stdin: int | None) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdin=stdin if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            logger.error(f"Cannot start {argv[0]}: {e}")
            raise ProcessingError(EXIT_NOT_FOUND, f"Cannot start {argv[0]}")

    @staticmethod
    async def _pump_stderr(stream: asyncio.StreamReader | None, verbose: bool) -> None:
        """Drain stderr so the pipe never fills up.

        Read in fixed-size chunks: ffmpeg progress updates end in a carriage
        return, so a long job can exceed the StreamReader line limit
        without ever writing a newline.
        """
        if stream is None:
            return
        while True:
            chunk = await stream.read(8192)
            if not chunk:
                break
            if verbose:
                for line in chunk.decode("utf-8", errors="ignore").splitlines():
                    if line.strip():
                        logger.debug(f"[ffmpeg] {line.rstrip()}")

    @staticmethod
    async def _terminate(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=5)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()

    @staticmethod
    async def _cancel(*tasks: asyncio.Task) -> None:
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except (asyncio.CancelledError, Exception):
                pass

    @staticmethod
    async def _close_source(source: AsyncIterator[bytes]) -> None:
        aclose = getattr(source, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as e:
            logger.debug(f"Error closing stream source: {e}")

    async def run(
        self,
        argv: list[str],
        *,
        verbose: bool = True,
        capture_stdout: bool = False,
    ) -> ProcessResult:
        """Run to completion in file mode.

        Raises:
            ProcessingError: non-zero exit or binary not startable
            ProcessingTimeoutError: exceeded ``timeout_s``
            ServiceBusyError: no slot within ``queue_timeout_s``
        """
        async with self._slot():
            started = time.monotonic()
            if verbose:
                logger.info(f"Running: {' '.join(argv)}")
            proc = await self._spawn(argv, stdin=None)

            stderr_task = asyncio.create_task(self._pump_stderr(proc.stderr, verbose))
            stdout_task = asyncio.create_task(proc.stdout.read())
            try:
                exit_code = await asyncio.wait_for(proc.wait(), timeout=self.timeout_s)
                stdout = await stdout_task
                await stderr_task
            except asyncio.TimeoutError:
                logger.error(f"{argv[0]} timed out after {self.timeout_s}s, terminating")
                await self._terminate(proc)
                await self._cancel(stdout_task, stderr_task)
                raise ProcessingTimeoutError(self.timeout_s)
            except BaseException:
                await self._terminate(proc)
                await self._cancel(stdout_task, stderr_task)
                raise

            result = ProcessResult(
                argv=list(argv),
                exit_code=exit_code,
                stdout=stdout if capture_stdout else b"",
                elapsed_s=time.monotonic() - started,
            )

        if not result.ok:
            logger.warning(f"{argv[0]} exited with code {exit_code}")
            raise ProcessingError(exit_code)
        if verbose:
            logger.info(f"{argv[0]} finished in {result.elapsed_s:.2f}s")
        return result

    async def stream(
        self,
        argv: list[str],
        source: AsyncIterator[bytes],
        *,
        verbose: bool = True,
    ) -> AsyncIterator[bytes]:
        """Pipe ``source`` through the process and yield its stdout.

        The feeder task awaits ``drain()`` after every write, so a slow
        consumer stalls the source through OS pipe backpressure instead of
        buffering in memory. If the consumer stops early or either side
        fails, the process is terminated.
        """
        async with self._slot():
            if verbose:
                logger.info(f"Streaming: {' '.join(argv)}")
            proc = await self._spawn(argv, stdin=asyncio.subprocess.PIPE)
            deadline = time.monotonic() + self.timeout_s

            # Spawned with stdin=PIPE, so the writer is always present
            stdin = cast(asyncio.StreamWriter, proc.stdin)

            async def feed() -> None:
                try:
                    async for chunk in source:
                        stdin.write(chunk)
                        await stdin.drain()
                except (BrokenPipeError, ConnectionResetError):
                    # ffmpeg stopped reading; its exit code tells the story
                    pass
                finally:
                    if not stdin.is_closing():
                        stdin.close()

            feeder = asyncio.create_task(feed())
            stderr_task = asyncio.create_task(self._pump_stderr(proc.stderr, verbose))
            try:
                while True:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise asyncio.TimeoutError()
                    chunk = await asyncio.wait_for(proc.stdout.read(self.chunk_size), timeout=remaining)
                    if not chunk:
                        break
                    if feeder.done() and feeder.exception() is not None:
                        raise feeder.exception()
                    yield chunk

                # Surface source failures (e.g. FetchError mid-body)
                await feeder
                exit_code = await asyncio.wait_for(
                    proc.wait(), timeout=max(deadline - time.monotonic(), 0.1)
                )
                await stderr_task
            except asyncio.TimeoutError:
                logger.error(f"{argv[0]} stream timed out after {self.timeout_s}s, terminating")
                await self._terminate(proc)
                await self._cancel(feeder, stderr_task)
                await self._close_source(source)
                raise ProcessingTimeoutError(self.timeout_s)
            except BaseException:
                await self._terminate(proc)
                await self._cancel(feeder, stderr_task)
                await self._close_source(source)
                raise

        if exit_code != 0:
            logger.warning(f"{argv[0]} stream exited with code {exit_code}")
            raise ProcessingError(exit_code)
