"""
Pytest fixtures for FFmpeg API tests.

Most tests run against small fake ffmpeg/ffprobe scripts written to a temp
directory, so the suite does not need the real binaries. The fake ffmpeg
behaviour is selected with the FAKE_FFMPEG_MODE environment variable:

- copy (default): concatenate every ``-i`` input into the last argument,
  or copy stdin to stdout when the output is ``pipe:1``
- fail:N: exit with code N without writing anything
- empty: exit 0 without writing anything
- sleep:S: sleep S seconds, then behave like copy

Remote media is served by an httpx.MockTransport (see ``FakeRemote``).

Tests that need the real binaries are marked with @pytest.mark.requires_ffmpeg
and are skipped when ffmpeg is not on PATH.
"""

import json
import os
import shutil
import stat
import sys
from contextlib import ExitStack
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from ffmpeg_api.config import Settings
from ffmpeg_api.main import create_app

SAMPLE_MEDIA = b"\x00\x00\x00\x18ftypmp42fake-media-payload"
MEDIA_HOST = "media.test"
UNREACHABLE_HOST = "unreachable.test"

FAKE_FFMPEG_SOURCE = '''
import os
import sys
import time

mode = os.environ.get("FAKE_FFMPEG_MODE", "copy")
args = sys.argv[1:]
sys.stderr.write("fake-ffmpeg " + " ".join(args) + "\\n")

if mode.startswith("fail"):
    sys.exit(int(mode.partition(":")[2] or 1))
if mode.startswith("sleep"):
    time.sleep(float(mode.partition(":")[2] or 5))
if mode == "empty":
    sys.exit(0)

if args and args[-1] == "pipe:1":
    sys.stdout.buffer.write(sys.stdin.buffer.read())
    sys.exit(0)

inputs = [args[i + 1] for i, arg in enumerate(args[:-1]) if arg == "-i"]
with open(args[-1], "wb") as out:
    for path in inputs:
        with open(path, "rb") as src:
            out.write(src.read())
'''

PROBE_OUTPUT = {
    "format": {
        "format_name": "mov,mp4,m4a,3gp,3g2,mj2",
        "duration": "10.500000",
        "size": "1048576",
        "bit_rate": "798915",
    },
    "streams": [
        {
            "index": 0,
            "codec_type": "video",
            "codec_name": "h264",
            "width": 640,
            "height": 360,
            "r_frame_rate": "30000/1001",
        },
        {
            "index": 1,
            "codec_type": "audio",
            "codec_name": "aac",
            "sample_rate": "44100",
            "channels": 2,
        },
    ],
}

FAKE_FFPROBE_SOURCE = f'''
import os
import sys

mode = os.environ.get("FAKE_FFMPEG_MODE", "copy")
if mode.startswith("fail"):
    sys.exit(int(mode.partition(":")[2] or 1))
if mode == "empty":
    sys.exit(0)
sys.stdout.write({json.dumps(json.dumps(PROBE_OUTPUT))})
'''


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring real ffmpeg/ffprobe binaries on PATH",
    )


requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg/ffprobe not installed",
)


def _write_script(path: Path, source: str) -> Path:
    path.write_text(f"#!{sys.executable}\n{source}", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture(scope="session")
def fake_bin(tmp_path_factory) -> Path:
    """Directory holding the fake ffmpeg and ffprobe executables."""
    bin_dir = tmp_path_factory.mktemp("fake_bin")
    _write_script(bin_dir / "ffmpeg", FAKE_FFMPEG_SOURCE)
    _write_script(bin_dir / "ffprobe", FAKE_FFPROBE_SOURCE)
    return bin_dir


@pytest.fixture
def ffmpeg_mode(monkeypatch):
    """Switch the fake ffmpeg behaviour for the current test."""

    def _set(mode: str) -> None:
        monkeypatch.setenv("FAKE_FFMPEG_MODE", mode)

    monkeypatch.delenv("FAKE_FFMPEG_MODE", raising=False)
    return _set


@pytest.fixture
def scratch_dir(tmp_path) -> Path:
    return tmp_path / "scratch"


@pytest.fixture
def settings(fake_bin, scratch_dir, ffmpeg_mode) -> Settings:
    return Settings(
        _env_file=None,
        api_key="",
        require_api_key=False,
        ffmpeg_path=str(fake_bin / "ffmpeg"),
        ffprobe_path=str(fake_bin / "ffprobe"),
        temp_dir=str(scratch_dir),
        rate_limit_requests=0,
        max_concurrent_jobs=2,
        queue_timeout_s=5,
        ffmpeg_timeout_s=30,
        healthcheck_batch_delay_s=0,
        healthcheck_probe_delay_s=0,
        sample_video_url=f"http://{MEDIA_HOST}/sample.mp4",
        sample_video_url_alt=f"http://{MEDIA_HOST}/sample-alt.mp4",
        sample_image_url=f"http://{MEDIA_HOST}/logo.png",
    )


class FakeRemote:
    """httpx.MockTransport handler standing in for the outside world.

    - ``media.test`` serves SAMPLE_MEDIA for any path except ``/missing*``
    - ``unreachable.test`` fails with a connection error
    - anything else is treated as this service answering healthcheck probes;
      the status per path defaults to 200 and can be overridden
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.probe_statuses: dict[str, int] = {}

    @property
    def media_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == MEDIA_HOST]

    @property
    def probe_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host not in (MEDIA_HOST, UNREACHABLE_HOST)]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == UNREACHABLE_HOST:
            raise httpx.ConnectError("connection refused", request=request)
        if request.url.host == MEDIA_HOST:
            if request.url.path.startswith("/missing"):
                return httpx.Response(404, text="not found")
            return httpx.Response(200, content=SAMPLE_MEDIA)
        status = self.probe_statuses.get(request.url.path, 200)
        return httpx.Response(status, json={"ok": status == 200})


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def make_client(settings, remote):
    """Factory for TestClients with settings overrides; all are closed at teardown."""
    with ExitStack() as stack:

        def _make(**overrides) -> TestClient:
            app = create_app(
                settings.model_copy(update=overrides),
                http_transport=httpx.MockTransport(remote),
            )
            return stack.enter_context(TestClient(app, raise_server_exceptions=False))

        yield _make


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


def leftover_files(directory: Path) -> list[str]:
    """Files still present in a scratch directory."""
    if not directory.exists():
        return []
    return sorted(os.listdir(directory))
