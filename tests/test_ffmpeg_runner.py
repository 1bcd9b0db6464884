"""
Tests for the subprocess runner.

Uses the Python interpreter as a stand-in binary so exit codes, timing and
pipes can be controlled precisely.
"""

import asyncio
import sys

import pytest

from ffmpeg_api.exceptions import (
    FetchError,
    ProcessingError,
    ProcessingTimeoutError,
    ServiceBusyError,
)
from ffmpeg_api.services.ffmpeg_runner import EXIT_NOT_FOUND, FFmpegRunner

UPPERCASE_PIPE = "import sys; sys.stdout.buffer.write(sys.stdin.buffer.read().upper())"


def _py(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def _runner(**kwargs) -> FFmpegRunner:
    kwargs.setdefault("max_concurrent", 2)
    kwargs.setdefault("timeout_s", 10)
    kwargs.setdefault("queue_timeout_s", 5)
    return FFmpegRunner(**kwargs)


async def _source(*chunks: bytes):
    for chunk in chunks:
        yield chunk


class TestRun:
    @pytest.mark.asyncio
    async def test_success_captures_stdout(self):
        result = await _runner().run(_py("print('hello')"), capture_stdout=True)

        assert result.ok
        assert result.exit_code == 0
        assert result.stdout.strip() == b"hello"
        assert result.elapsed_s > 0

    @pytest.mark.asyncio
    async def test_stdout_discarded_by_default(self):
        result = await _runner().run(_py("print('hello')"))

        assert result.stdout == b""

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises(self):
        with pytest.raises(ProcessingError) as exc_info:
            await _runner().run(_py("import sys; sys.stderr.write('boom\\n'); sys.exit(3)"))

        assert exc_info.value.exit_code == 3
        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "FFmpeg failed with exit code 3"

    @pytest.mark.asyncio
    async def test_quiet_run_still_drains_stderr(self):
        code = "import sys; sys.stderr.write('x' * 200000)"

        result = await _runner().run(_py(code), verbose=False)

        assert result.ok

    @pytest.mark.asyncio
    async def test_timeout_terminates_process(self):
        runner = _runner(timeout_s=0.3)

        with pytest.raises(ProcessingTimeoutError) as exc_info:
            await runner.run(_py("import time; time.sleep(30)"))

        assert exc_info.value.status_code == 504
        assert runner.active_jobs == 0

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        with pytest.raises(ProcessingError) as exc_info:
            await _runner().run([str(tmp_path / "missing-ffmpeg"), "-version"])

        assert exc_info.value.exit_code == EXIT_NOT_FOUND


class TestConcurrencyCap:
    @pytest.mark.asyncio
    async def test_busy_when_no_slot_frees_up(self):
        runner = _runner(max_concurrent=1, queue_timeout_s=0.1)
        long_job = asyncio.create_task(runner.run(_py("import time; time.sleep(5)")))
        await asyncio.sleep(0.05)

        assert runner.active_jobs == 1
        with pytest.raises(ServiceBusyError) as exc_info:
            await runner.run(_py("pass"))
        assert exc_info.value.status_code == 503

        long_job.cancel()
        with pytest.raises(asyncio.CancelledError):
            await long_job
        assert runner.active_jobs == 0

    @pytest.mark.asyncio
    async def test_queued_job_runs_when_slot_frees(self):
        runner = _runner(max_concurrent=1, queue_timeout_s=10)

        results = await asyncio.gather(
            runner.run(_py("import time; time.sleep(0.2)")),
            runner.run(_py("pass")),
        )

        assert [r.exit_code for r in results] == [0, 0]
        assert runner.active_jobs == 0


class TestStream:
    @pytest.mark.asyncio
    async def test_pipes_source_through_process(self):
        runner = _runner(chunk_size=4)

        chunks = [c async for c in runner.stream(_py(UPPERCASE_PIPE), _source(b"abc", b"def"))]

        assert b"".join(chunks) == b"ABCDEF"
        assert all(len(c) <= 4 for c in chunks)
        assert runner.active_jobs == 0

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_after_output(self):
        code = "import sys; sys.stdout.buffer.write(sys.stdin.buffer.read()); sys.stdout.flush(); sys.exit(2)"
        received = b""

        with pytest.raises(ProcessingError) as exc_info:
            async for chunk in _runner().stream(_py(code), _source(b"partial")):
                received += chunk

        assert exc_info.value.exit_code == 2
        assert received == b"partial"

    @pytest.mark.asyncio
    async def test_source_failure_surfaces(self):
        async def failing_source():
            yield b"abc"
            raise FetchError("http://media.test/a.mp3", "connection reset")

        with pytest.raises(FetchError):
            async for _ in _runner().stream(_py(UPPERCASE_PIPE), failing_source()):
                pass

    @pytest.mark.asyncio
    async def test_consumer_stopping_early_terminates_process(self):
        runner = _runner(chunk_size=1)
        code = "import sys, time\nfor _ in range(1000):\n    sys.stdout.write('x'); sys.stdout.flush(); time.sleep(0.01)"

        stream = runner.stream(_py(code), _source())
        first = await stream.__anext__()
        await stream.aclose()

        assert first == b"x"
        assert runner.active_jobs == 0

    @pytest.mark.asyncio
    async def test_stream_timeout(self):
        runner = _runner(timeout_s=0.3)

        with pytest.raises(ProcessingTimeoutError):
            async for _ in runner.stream(_py("import time; time.sleep(30)"), _source(b"a")):
                pass

        assert runner.active_jobs == 0
